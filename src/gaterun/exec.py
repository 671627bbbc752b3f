"""Command runners for gates and repository queries."""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from gaterun.errors import GateTimeoutError, ToolInvocationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExecResult:
    """Result envelope for subprocess execution."""

    argv: tuple[str, ...]
    cwd: Path
    returncode: int
    stdout: str
    stderr: str

    @property
    def output(self) -> str:
        """Combined stdout and stderr, as shown in gate diagnostics."""
        parts = [self.stdout.strip(), self.stderr.strip()]
        return "\n".join(p for p in parts if p)


class ExecError(RuntimeError):
    """Raised when a command returns non-zero in check mode."""

    def __init__(self, result: ExecResult):
        rendered = " ".join(result.argv)
        detail = (result.stderr or result.stdout).strip()
        super().__init__(f"command failed ({result.returncode}): {rendered}\n{detail}")
        self.result = result


def run_command(
    argv: list[str],
    *,
    cwd: Path,
    check: bool = True,
    timeout: float | None = None,
    env: Mapping[str, str] | None = None,
) -> ExecResult:
    """Run command and return structured result.

    Raises:
        ToolInvocationError: The executable could not be started.
        GateTimeoutError: The command exceeded ``timeout`` and was killed.
        ExecError: ``check`` is set and the command exited non-zero.
    """
    logger.debug("exec %s (cwd=%s, timeout=%s)", argv, cwd, timeout)
    try:
        completed = subprocess.run(
            argv,
            cwd=cwd,
            capture_output=True,
            text=True,
            check=False,
            timeout=timeout,
            env=dict(env) if env is not None else None,
        )
    except FileNotFoundError as exc:
        raise ToolInvocationError(argv[0]) from exc
    except PermissionError as exc:
        raise ToolInvocationError(argv[0], f"not executable: {exc}") from exc
    except subprocess.TimeoutExpired as exc:
        raise GateTimeoutError(timeout or 0) from exc
    result = ExecResult(
        argv=tuple(argv),
        cwd=cwd.resolve(),
        returncode=completed.returncode,
        stdout=completed.stdout,
        stderr=completed.stderr,
    )
    if check and result.returncode != 0:
        raise ExecError(result)
    return result


def run_git(
    args: list[str],
    *,
    repo_root: Path,
    check: bool = True,
) -> ExecResult:
    """Run git command rooted at repo."""
    return run_command(["git", *args], cwd=repo_root, check=check)
