"""Gate runner: phase scheduling, concurrency and aggregation.

A run moves through ``init -> selecting_files -> running_sequential_gates ->
running_parallel_gates -> aggregating -> success|failure``.

Sequential gates run one at a time in declared order so that auto-fixing gates
rewrite and re-stage files before later gates read them. Parallel gates run on a
bounded thread pool and are always joined before aggregation, so a single
invocation reports every independent failure.
"""

from __future__ import annotations

import logging
import time
from dataclasses import replace
from collections.abc import Collection, Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor, wait
from concurrent.futures import TimeoutError as FutureTimeoutError
from enum import Enum
from pathlib import Path

from gaterun.context import GateContext, build_context
from gaterun.errors import (
    ApplicabilityError,
    GateConfigError,
    GateTimeoutError,
    ToolInvocationError,
    ViolationError,
)
from gaterun.selector import DiffRange, parse_range, restage, select_files
from gaterun.types import (
    FailurePolicy,
    FileSet,
    GateOutcome,
    GateResult,
    GateSpec,
    RunReport,
    Severity,
    SkipReason,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 300.0
DEFAULT_MAX_WORKERS = 8
# subprocess timeouts fire first and kill the child
KILL_GRACE = 0.5


class RunPhase(str, Enum):
    """Runner state machine."""

    INIT = "init"
    SELECTING_FILES = "selecting_files"
    RUNNING_SEQUENTIAL_GATES = "running_sequential_gates"
    RUNNING_PARALLEL_GATES = "running_parallel_gates"
    AGGREGATING = "aggregating"
    SUCCESS = "success"
    FAILURE = "failure"


def _validate_specs(specs: Sequence[GateSpec]) -> None:
    seen: set[str] = set()
    for spec in specs:
        if spec.name in seen:
            raise GateConfigError(f"duplicate gate name: {spec.name}")
        seen.add(spec.name)
        if spec.fix is not None and spec.parallel:
            raise GateConfigError(
                f"gate {spec.name!r} auto-fixes files and must run in the sequential phase (parallel: false)"
            )
        if spec.timeout is not None and spec.timeout <= 0:
            raise GateConfigError(f"gate {spec.name!r} has a non-positive timeout")


class GateRunner:
    """Runs a fixed list of gates against one FileSet and aggregates results."""

    def __init__(
        self,
        specs: Iterable[GateSpec],
        *,
        policy: FailurePolicy = FailurePolicy.CONTINUE,
        default_timeout: float = DEFAULT_TIMEOUT,
        max_workers: int = DEFAULT_MAX_WORKERS,
        only: Collection[str] | None = None,
        skip: Collection[str] = (),
    ):
        declared = list(specs)
        _validate_specs(declared)

        if only:
            known = {s.name for s in declared}
            unknown = sorted(set(only) - known)
            if unknown:
                raise GateConfigError(f"unknown gate(s): {', '.join(unknown)}. Known: {', '.join(sorted(known))}")
            declared = [s for s in declared if s.name in only]

        if default_timeout <= 0:
            raise GateConfigError("default timeout must be positive")
        if max_workers < 1:
            raise GateConfigError("max_workers must be at least 1")

        self.specs: tuple[GateSpec, ...] = tuple(declared)
        self.policy = policy
        self.default_timeout = default_timeout
        self.max_workers = max_workers
        self.skip = frozenset(skip)
        self.phase = RunPhase.INIT

    def _enter(self, phase: RunPhase) -> None:
        logger.debug("phase %s -> %s", self.phase.value, phase.value)
        self.phase = phase

    def run(
        self,
        repo_root: Path,
        diff_range: str | DiffRange = "staged",
        *,
        context: GateContext | None = None,
        files: FileSet | None = None,
    ) -> RunReport:
        """Execute every gate and return the run report.

        Raises:
            RepositoryStateError: File selection failed; no gate has run.
        """
        started = time.perf_counter()
        self._enter(RunPhase.INIT)
        parsed = diff_range if isinstance(diff_range, DiffRange) else parse_range(diff_range)

        self._enter(RunPhase.SELECTING_FILES)
        if files is None:
            files = select_files(repo_root, parsed)
        ctx = context or build_context(repo_root, parsed)

        results: dict[str, GateResult] = {}

        self._enter(RunPhase.RUNNING_SEQUENTIAL_GATES)
        halted = False
        for spec in self.specs:
            if spec.parallel:
                continue
            if halted:
                results[spec.name] = GateResult.skipped(spec.name, SkipReason.PRIOR_HARD_FAILURE)
                continue
            result = self._execute(spec, files, ctx)
            results[spec.name] = result
            if result.outcome is GateOutcome.FAIL:
                logger.debug("hard failure in %s; halting sequential phase", spec.name)
                halted = True

        self._enter(RunPhase.RUNNING_PARALLEL_GATES)
        parallel = [s for s in self.specs if s.parallel]
        if halted and self.policy is FailurePolicy.HALT:
            for spec in parallel:
                results[spec.name] = GateResult.skipped(spec.name, SkipReason.PRIOR_HARD_FAILURE)
        else:
            results.update(self._run_parallel(parallel, files, ctx))

        self._enter(RunPhase.AGGREGATING)
        report = RunReport(
            results=tuple(results[s.name] for s in self.specs),
            diff_range=parsed.spec,
            policy=self.policy,
            file_count=len(files),
            elapsed_seconds=time.perf_counter() - started,
        )
        self._enter(RunPhase.SUCCESS if report.exit_code == 0 else RunPhase.FAILURE)
        return report

    def _run_parallel(self, specs: Sequence[GateSpec], files: FileSet, ctx: GateContext) -> dict[str, GateResult]:
        if not specs:
            return {}
        executor = ThreadPoolExecutor(
            max_workers=min(len(specs), self.max_workers),
            thread_name_prefix="gaterun",
        )
        try:
            futures = {executor.submit(self._execute, spec, files, ctx): spec for spec in specs}
            wait(futures)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        collected: dict[str, GateResult] = {}
        for future, spec in futures.items():
            try:
                collected[spec.name] = future.result()
            except Exception as exc:  # pool-level failure
                collected[spec.name] = GateResult(
                    gate=spec.name,
                    outcome=GateOutcome.FAIL,
                    message=f"{type(exc).__name__}: {exc}",
                )
        return collected

    def _execute(self, spec: GateSpec, files: FileSet, ctx: GateContext) -> GateResult:
        """Applicability, timeout and isolation around one gate."""
        if spec.name in self.skip:
            return GateResult.skipped(spec.name, SkipReason.DISABLED)

        gate_files = files.filter(spec.patterns)
        if not gate_files:
            return GateResult.skipped(spec.name, SkipReason.NOT_APPLICABLE)

        if spec.applies is not None:
            try:
                applicable = spec.applies(gate_files, ctx)
            except Exception as exc:
                return GateResult(
                    gate=spec.name,
                    outcome=GateOutcome.FAIL,
                    message=f"applicability check failed: {type(exc).__name__}: {exc}",
                )
            if not applicable:
                return GateResult.skipped(spec.name, SkipReason.NOT_APPLICABLE)

        timeout = spec.timeout or self.default_timeout
        logger.debug("gate %s starting on %d file(s), timeout %ss", spec.name, len(gate_files), timeout)
        gate_ctx = replace(ctx, timeout=timeout)
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"gate-{spec.name}")
        try:
            future = executor.submit(self._evaluate, spec, gate_files, gate_ctx)
            try:
                result = future.result(timeout=timeout + KILL_GRACE)
            except FutureTimeoutError:
                result = GateResult(
                    gate=spec.name,
                    outcome=GateOutcome.FAIL,
                    message=str(GateTimeoutError(timeout)),
                    elapsed_seconds=timeout,
                )
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
        logger.debug("gate %s finished: %s", spec.name, result.outcome.value)
        return result

    def _evaluate(self, spec: GateSpec, files: FileSet, ctx: GateContext) -> GateResult:
        started = time.perf_counter()
        fixed: tuple[str, ...] = ()
        outcome = GateOutcome.PASS
        message = ""
        offending: tuple[str, ...] = ()
        skip_reason: SkipReason | None = None

        try:
            if spec.fix is not None and ctx.flag("NO_FIX") != "1":
                fixed = tuple(spec.fix(files, ctx))
                if fixed and ctx.diff_range.kind == "staged":
                    restage(ctx.repo_root, fixed)
            message = spec.check(files, ctx) or ""
        except ApplicabilityError as exc:
            outcome = GateOutcome.SKIPPED
            skip_reason = SkipReason.NOT_APPLICABLE
            message = str(exc)
        except ViolationError as exc:
            outcome = GateOutcome.FAIL if spec.severity is Severity.HARD else GateOutcome.WARN
            message = str(exc)
            offending = exc.files
        except (ToolInvocationError, GateTimeoutError) as exc:
            outcome = GateOutcome.FAIL
            message = str(exc)
        except Exception as exc:
            logger.debug("gate %s raised", spec.name, exc_info=True)
            outcome = GateOutcome.FAIL
            message = f"{type(exc).__name__}: {exc}"

        return GateResult(
            gate=spec.name,
            outcome=outcome,
            message=message,
            files=offending,
            elapsed_seconds=time.perf_counter() - started,
            skip_reason=skip_reason,
            fixed_files=fixed,
        )
