"""Error taxonomy for gate runs.

Gate-level errors (applicability, tool invocation, violations, timeouts) never
cross gate boundaries: the runner converts them into results. Repository state
and configuration errors are pre-flight and abort the run.
"""

from __future__ import annotations

from collections.abc import Sequence


class GateRunError(RuntimeError):
    """Base class for gaterun errors."""


class RepositoryStateError(GateRunError):
    """Raised when the diff range or repository state cannot be resolved."""


class GateConfigError(GateRunError):
    """Raised when gate configuration is malformed or inconsistent."""


class ApplicabilityError(GateRunError):
    """Raised by a gate whose precondition does not hold; recorded as skipped."""


class ToolInvocationError(GateRunError):
    """Raised when an external tool cannot be started."""

    def __init__(self, tool: str, detail: str | None = None):
        message = f"required tool not found: {tool}. Install it or put it on PATH."
        if detail:
            message = f"{message}\n{detail}"
        super().__init__(message)
        self.tool = tool


class ViolationError(GateRunError):
    """Raised when a check ran and found violations."""

    def __init__(self, message: str, files: Sequence[str] = ()):
        super().__init__(message)
        self.files = tuple(files)


class GateTimeoutError(GateRunError):
    """Raised when a gate exceeds its wall-clock budget."""

    def __init__(self, seconds: float):
        super().__init__(f"timed out after {seconds:g}s")
        self.seconds = seconds
