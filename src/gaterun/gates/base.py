"""Shared option parsing for gate builders."""

from __future__ import annotations

import shlex
from collections.abc import Mapping, Sequence
from typing import Any

from gaterun.errors import GateConfigError
from gaterun.types import AppliesFn, CheckFn, FixFn, GateSpec, Severity

COMMON_KEYS = frozenset({"name", "kind", "severity", "parallel", "patterns", "timeout", "description"})


def as_argv(name: str, options: Mapping[str, Any], key: str, *, required: bool = False) -> list[str] | None:
    """Read a command option given either as a list or a shell string."""
    value = options.get(key)
    if value is None:
        if required:
            raise GateConfigError(f"gate {name!r}: '{key}' is required")
        return None
    if isinstance(value, str):
        argv = shlex.split(value)
    elif isinstance(value, Sequence) and all(isinstance(v, str | int | float) for v in value):
        argv = [str(v) for v in value]
    else:
        raise GateConfigError(f"gate {name!r}: '{key}' must be a string or a list of strings")
    if not argv:
        raise GateConfigError(f"gate {name!r}: '{key}' is empty")
    return argv


def as_patterns(name: str, value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        return (value,)
    if isinstance(value, Sequence) and all(isinstance(v, str) for v in value):
        return tuple(value)
    raise GateConfigError(f"gate {name!r}: 'patterns' must be a string or a list of strings")


def as_number(name: str, options: Mapping[str, Any], key: str, default: float | None = None) -> float | None:
    value = options.get(key, default)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise GateConfigError(f"gate {name!r}: '{key}' must be a number")
    return float(value)


def build_spec(
    name: str,
    options: Mapping[str, Any],
    check: CheckFn,
    *,
    kind: str,
    severity: Severity,
    parallel: bool,
    patterns: Sequence[str],
    fix: FixFn | None = None,
    applies: AppliesFn | None = None,
    description: str = "",
) -> GateSpec:
    """Build a GateSpec, letting ``options`` override the kind's defaults."""
    raw_severity = options.get("severity", severity.value)
    try:
        resolved_severity = Severity(raw_severity)
    except ValueError as exc:
        raise GateConfigError(f"gate {name!r}: severity must be 'hard' or 'advisory', got {raw_severity!r}") from exc

    raw_parallel = options.get("parallel", parallel)
    if not isinstance(raw_parallel, bool):
        raise GateConfigError(f"gate {name!r}: 'parallel' must be true or false")

    resolved_patterns = as_patterns(name, options["patterns"]) if "patterns" in options else tuple(patterns)

    return GateSpec(
        name=name,
        check=check,
        severity=resolved_severity,
        parallel=raw_parallel,
        patterns=resolved_patterns,
        applies=applies,
        fix=fix,
        timeout=as_number(name, options, "timeout"),
        kind=kind,
        description=str(options.get("description", description)),
    )
