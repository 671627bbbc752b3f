"""Gates backed by an external tool (formatter, linter, type-checker, tests).

The only contract with the tool is its exit status: zero passes, anything
else fails with the tool's combined output as the diagnostic.
"""

from __future__ import annotations

import hashlib
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from gaterun.context import GateContext
from gaterun.errors import ViolationError
from gaterun.exec import run_command
from gaterun.gates.base import as_argv, build_spec
from gaterun.types import FileSet, GateSpec, Severity


def _digest(path: Path) -> str | None:
    if not path.is_file():
        return None
    return hashlib.sha256(path.read_bytes()).hexdigest()


def build_command_gate(name: str, options: Mapping[str, Any]) -> GateSpec:
    command = as_argv(name, options, "command", required=True)
    fix_command = as_argv(name, options, "fix_command")
    pass_filenames = bool(options.get("pass_filenames", True))
    assert command is not None

    def _argv(base: list[str], files: FileSet) -> list[str]:
        return [*base, *files] if pass_filenames else list(base)

    def check(files: FileSet, ctx: GateContext) -> str | None:
        result = run_command(_argv(command, files), cwd=ctx.repo_root, check=False, timeout=ctx.timeout)
        if result.returncode != 0:
            detail = result.output or f"{command[0]} exited with status {result.returncode}"
            raise ViolationError(detail)
        return None

    def fix(files: FileSet, ctx: GateContext) -> list[str]:
        assert fix_command is not None
        before = {path: _digest(ctx.repo_root / path) for path in files}
        run_command(_argv(fix_command, files), cwd=ctx.repo_root, check=False, timeout=ctx.timeout)
        return [path for path, digest in before.items() if _digest(ctx.repo_root / path) != digest]

    return build_spec(
        name,
        options,
        check,
        kind="command",
        severity=Severity.HARD,
        parallel=fix_command is None,
        patterns=("*",),
        fix=fix if fix_command is not None else None,
        description=f"runs {' '.join(command)}",
    )
