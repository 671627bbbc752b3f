"""Core types for gate runs."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator, Sequence
from dataclasses import dataclass, field
from enum import Enum
from fnmatch import fnmatch
from pathlib import PurePosixPath
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from gaterun.context import GateContext


class Severity(str, Enum):
    """Static severity policy of a gate."""

    HARD = "hard"
    ADVISORY = "advisory"


class GateOutcome(str, Enum):
    """Outcome recorded for a single gate."""

    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"
    SKIPPED = "skipped"


class SkipReason(str, Enum):
    """Why a gate did not run."""

    NOT_APPLICABLE = "not_applicable"
    PRIOR_HARD_FAILURE = "prior_hard_failure"
    DISABLED = "disabled"


class RunOutcome(str, Enum):
    """Overall outcome of a run."""

    SUCCESS = "success"
    FAILURE = "failure"


class FailurePolicy(str, Enum):
    """What a sequential hard failure does to the parallel phase."""

    HALT = "halt"
    CONTINUE = "continue"


def _matches(path: str, pattern: str) -> bool:
    if pattern.endswith("/"):
        return path.startswith(pattern)
    return fnmatch(path, pattern) or fnmatch(PurePosixPath(path).name, pattern)


@dataclass(frozen=True)
class FileSet:
    """Ordered, de-duplicated set of repo-relative POSIX paths."""

    paths: tuple[str, ...] = ()

    @classmethod
    def of(cls, paths: Iterable[str]) -> FileSet:
        seen: dict[str, None] = {}
        for path in paths:
            normalized = PurePosixPath(path.strip()).as_posix()
            if normalized and normalized != ".":
                seen.setdefault(normalized, None)
        return cls(tuple(seen))

    def filter(self, patterns: Sequence[str]) -> FileSet:
        """Return the paths matching any of ``patterns``.

        A pattern matches the full path or the basename; a pattern ending in
        ``/`` is a directory prefix.
        """
        if not patterns:
            return self
        return FileSet(tuple(p for p in self.paths if any(_matches(p, pat) for pat in patterns)))

    def __contains__(self, path: object) -> bool:
        return path in self.paths

    def __iter__(self) -> Iterator[str]:
        return iter(self.paths)

    def __len__(self) -> int:
        return len(self.paths)

    def __bool__(self) -> bool:
        return bool(self.paths)


CheckFn = Callable[[FileSet, "GateContext"], "str | None"]
FixFn = Callable[[FileSet, "GateContext"], Sequence[str]]
AppliesFn = Callable[[FileSet, "GateContext"], bool]


@dataclass(frozen=True)
class GateSpec:
    """Static configuration for one gate."""

    name: str
    check: CheckFn
    severity: Severity = Severity.HARD
    parallel: bool = False
    patterns: tuple[str, ...] = ("*",)
    applies: AppliesFn | None = None
    fix: FixFn | None = None
    timeout: float | None = None
    kind: str = "custom"
    description: str = ""


@dataclass(frozen=True)
class GateResult:
    """Result of one gate in one run."""

    gate: str
    outcome: GateOutcome
    message: str = ""
    files: tuple[str, ...] = ()
    elapsed_seconds: float = 0.0
    skip_reason: SkipReason | None = None
    fixed_files: tuple[str, ...] = ()

    @classmethod
    def skipped(cls, gate: str, reason: SkipReason) -> GateResult:
        return cls(gate=gate, outcome=GateOutcome.SKIPPED, skip_reason=reason)

    def to_dict(self, include_timing: bool = True) -> dict[str, Any]:
        data: dict[str, Any] = {
            "gate": self.gate,
            "outcome": self.outcome.value,
            "message": self.message,
            "files": list(self.files),
            "skip_reason": self.skip_reason.value if self.skip_reason else None,
            "fixed_files": list(self.fixed_files),
        }
        if include_timing:
            data["elapsed_seconds"] = round(self.elapsed_seconds, 3)
        return data


@dataclass(frozen=True)
class RunReport:
    """Aggregated results of one invocation, in gate declaration order."""

    results: tuple[GateResult, ...]
    diff_range: str = "staged"
    policy: FailurePolicy = FailurePolicy.CONTINUE
    file_count: int = 0
    elapsed_seconds: float = 0.0
    counts: dict[str, int] = field(init=False)

    def __post_init__(self) -> None:
        counts = {outcome.value: 0 for outcome in GateOutcome}
        for result in self.results:
            counts[result.outcome.value] += 1
        object.__setattr__(self, "counts", counts)

    @property
    def outcome(self) -> RunOutcome:
        if any(r.outcome is GateOutcome.FAIL for r in self.results):
            return RunOutcome.FAILURE
        return RunOutcome.SUCCESS

    @property
    def exit_code(self) -> int:
        return 0 if self.outcome is RunOutcome.SUCCESS else 1

    def result_for(self, gate: str) -> GateResult:
        for result in self.results:
            if result.gate == gate:
                return result
        raise KeyError(gate)

    def to_dict(self, include_timing: bool = True) -> dict[str, Any]:
        data: dict[str, Any] = {
            "schema_version": "1.0",
            "outcome": self.outcome.value,
            "exit_code": self.exit_code,
            "diff_range": self.diff_range,
            "policy": self.policy.value,
            "file_count": self.file_count,
            "counts": dict(self.counts),
            "gates": [r.to_dict(include_timing=include_timing) for r in self.results],
        }
        if include_timing:
            data["elapsed_seconds"] = round(self.elapsed_seconds, 3)
        return data
