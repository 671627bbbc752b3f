"""Warn about oversized changes."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from gaterun.context import GateContext
from gaterun.errors import GateConfigError, ViolationError
from gaterun.gates.base import as_number, build_spec
from gaterun.types import FileSet, GateSpec, Severity

DEFAULT_MAX_FILES = 50


def build_commit_size_gate(name: str, options: Mapping[str, Any]) -> GateSpec:
    limit = as_number(name, options, "max_files", DEFAULT_MAX_FILES)
    if limit is None or limit < 1:
        raise GateConfigError(f"gate {name!r}: 'max_files' must be at least 1")
    max_files = int(limit)

    def check(files: FileSet, ctx: GateContext) -> str | None:
        _ = ctx
        if len(files) > max_files:
            raise ViolationError(
                f"{len(files)} files changed (limit {max_files}); consider splitting the change"
            )
        return f"{len(files)} file(s)"

    return build_spec(
        name,
        options,
        check,
        kind="commit-size",
        severity=Severity.ADVISORY,
        parallel=True,
        patterns=("*",),
        description=f"warns above {max_files} changed files",
    )
