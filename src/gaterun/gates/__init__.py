"""Built-in gate kinds."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

from gaterun.errors import GateConfigError
from gaterun.gates.command import build_command_gate
from gaterun.gates.commit_size import build_commit_size_gate
from gaterun.gates.complexity import build_complexity_gate
from gaterun.gates.console_log import build_console_log_gate
from gaterun.gates.lockfile import build_lockfile_gate
from gaterun.gates.secrets import build_secrets_gate
from gaterun.types import GateSpec

GateBuilder = Callable[[str, Mapping[str, Any]], GateSpec]

GATE_KINDS: dict[str, GateBuilder] = {
    "command": build_command_gate,
    "commit-size": build_commit_size_gate,
    "complexity": build_complexity_gate,
    "console-log": build_console_log_gate,
    "lockfile": build_lockfile_gate,
    "secrets": build_secrets_gate,
}

DEFAULT_GATES: tuple[tuple[str, str], ...] = (
    ("lockfile", "lockfile"),
    ("secrets", "secrets"),
    ("console-log", "console-log"),
    ("commit-size", "commit-size"),
)


def build_gate(name: str, kind: str, options: Mapping[str, Any] | None = None) -> GateSpec:
    """Instantiate a gate of ``kind``."""
    builder = GATE_KINDS.get(kind)
    if builder is None:
        raise GateConfigError(f"gate {name!r}: unknown kind {kind!r}. Valid kinds: {', '.join(sorted(GATE_KINDS))}")
    return builder(name, options or {})


def default_gates() -> list[GateSpec]:
    return [build_gate(name, kind) for name, kind in DEFAULT_GATES]


__all__ = ["GATE_KINDS", "GateBuilder", "build_gate", "default_gates"]
