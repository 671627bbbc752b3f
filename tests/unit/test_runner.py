"""Tests for gate scheduling and aggregation."""

from __future__ import annotations

import os
import sys
import threading
import time
from pathlib import Path
from types import MappingProxyType

import pytest

from gaterun.context import GateContext
from gaterun.errors import ApplicabilityError, GateConfigError, ToolInvocationError, ViolationError
from gaterun.gates import build_gate
from gaterun.runner import GateRunner, RunPhase
from gaterun.selector import DiffRange
from gaterun.types import (
    FailurePolicy,
    FileSet,
    GateOutcome,
    GateSpec,
    RunOutcome,
    Severity,
    SkipReason,
)


@pytest.fixture
def ctx(tmp_path: Path) -> GateContext:
    return GateContext(repo_root=tmp_path, diff_range=DiffRange(kind="all"))


def _passing(files, ctx):
    return None


def _violating(message: str = "bad"):
    def check(files, ctx):
        raise ViolationError(message, files=list(files))

    return check


def _recording(log: list[str], name: str):
    def check(files, ctx):
        log.append(name)
        return None

    return check


FILES = FileSet.of(["a.py", "b.ts"])


def _run(runner: GateRunner, ctx: GateContext, files: FileSet = FILES):
    return runner.run(ctx.repo_root, ctx.diff_range, context=ctx, files=files)


class TestApplicability:
    def test_empty_fileset_skips_every_gate(self, ctx: GateContext) -> None:
        runner = GateRunner(
            [
                GateSpec(name="lint", check=_passing, patterns=("*.py",)),
                GateSpec(name="all-files", check=_passing),
                GateSpec(name="par", check=_passing, parallel=True),
            ]
        )
        report = _run(runner, ctx, FileSet())

        assert [r.outcome for r in report.results] == [GateOutcome.SKIPPED] * 3
        assert all(r.skip_reason is SkipReason.NOT_APPLICABLE for r in report.results)
        assert report.outcome is RunOutcome.SUCCESS
        assert report.exit_code == 0

    def test_gate_receives_only_matching_files(self, ctx: GateContext) -> None:
        seen: list[tuple[str, ...]] = []

        def check(files, ctx):
            seen.append(files.paths)

        runner = GateRunner([GateSpec(name="ts", check=check, patterns=("*.ts",))])
        report = _run(runner, ctx)
        assert seen == [("b.ts",)]
        assert report.result_for("ts").outcome is GateOutcome.PASS

    def test_applies_predicate_false_is_skipped(self, ctx: GateContext) -> None:
        runner = GateRunner([GateSpec(name="g", check=_passing, applies=lambda files, ctx: False)])
        result = _run(runner, ctx).result_for("g")
        assert result.outcome is GateOutcome.SKIPPED
        assert result.skip_reason is SkipReason.NOT_APPLICABLE

    def test_applicability_error_from_check_is_skipped(self, ctx: GateContext) -> None:
        def check(files, ctx):
            raise ApplicabilityError("no tsconfig.json")

        result = _run(GateRunner([GateSpec(name="tsc", check=check)]), ctx).result_for("tsc")
        assert result.outcome is GateOutcome.SKIPPED
        assert "no tsconfig.json" in result.message

    def test_disabled_gate_is_recorded(self, ctx: GateContext) -> None:
        runner = GateRunner([GateSpec(name="slow", check=_violating())], skip=["slow"])
        report = _run(runner, ctx)
        assert report.result_for("slow").skip_reason is SkipReason.DISABLED
        assert report.outcome is RunOutcome.SUCCESS


class TestSeverity:
    def test_advisory_violation_warns_and_succeeds(self, ctx: GateContext) -> None:
        runner = GateRunner(
            [
                GateSpec(name="hard", check=_passing),
                GateSpec(name="advice", check=_violating("tidy up"), severity=Severity.ADVISORY),
            ]
        )
        report = _run(runner, ctx)
        advice = report.result_for("advice")
        assert advice.outcome is GateOutcome.WARN
        assert advice.message == "tidy up"
        assert advice.files == ("a.py", "b.ts")
        assert report.outcome is RunOutcome.SUCCESS

    def test_hard_violation_fails(self, ctx: GateContext) -> None:
        report = _run(GateRunner([GateSpec(name="hard", check=_violating())]), ctx)
        assert report.result_for("hard").outcome is GateOutcome.FAIL
        assert report.exit_code == 1

    def test_missing_tool_fails_even_for_advisory_gates(self, ctx: GateContext) -> None:
        def check(files, ctx):
            raise ToolInvocationError("eslint")

        report = _run(GateRunner([GateSpec(name="lint", check=check, severity=Severity.ADVISORY)]), ctx)
        result = report.result_for("lint")
        assert result.outcome is GateOutcome.FAIL
        assert "eslint" in result.message
        assert "Install" in result.message

    def test_unexpected_exception_becomes_fail(self, ctx: GateContext) -> None:
        def check(files, ctx):
            raise KeyError("boom")

        result = _run(GateRunner([GateSpec(name="buggy", check=check)]), ctx).result_for("buggy")
        assert result.outcome is GateOutcome.FAIL
        assert result.message.startswith("KeyError")


class TestSequentialPhase:
    def test_runs_in_declared_order(self, ctx: GateContext) -> None:
        log: list[str] = []
        runner = GateRunner([GateSpec(name=n, check=_recording(log, n)) for n in ("one", "two", "three")])
        _run(runner, ctx)
        assert log == ["one", "two", "three"]

    def test_hard_failure_skips_remaining_sequential_gates(self, ctx: GateContext) -> None:
        log: list[str] = []
        runner = GateRunner(
            [
                GateSpec(name="format", check=_violating()),
                GateSpec(name="lint", check=_recording(log, "lint")),
                GateSpec(name="types", check=_recording(log, "types")),
            ]
        )
        report = _run(runner, ctx)
        assert log == []
        assert report.result_for("format").outcome is GateOutcome.FAIL
        for name in ("lint", "types"):
            assert report.result_for(name).skip_reason is SkipReason.PRIOR_HARD_FAILURE
        assert report.outcome is RunOutcome.FAILURE

    def test_advisory_warning_does_not_halt(self, ctx: GateContext) -> None:
        log: list[str] = []
        runner = GateRunner(
            [
                GateSpec(name="advice", check=_violating(), severity=Severity.ADVISORY),
                GateSpec(name="lint", check=_recording(log, "lint")),
            ]
        )
        _run(runner, ctx)
        assert log == ["lint"]

    def test_fix_runs_before_check_and_is_recorded(self, ctx: GateContext) -> None:
        log: list[str] = []

        def fix(files, ctx):
            log.append("fix")
            return ["a.py"]

        runner = GateRunner([GateSpec(name="format", check=_recording(log, "check"), fix=fix)])
        result = _run(runner, ctx).result_for("format")
        assert log == ["fix", "check"]
        assert result.fixed_files == ("a.py",)
        assert result.outcome is GateOutcome.PASS


class TestFailurePolicy:
    def _specs(self, log: list[str]) -> list[GateSpec]:
        return [
            GateSpec(name="format", check=_violating()),
            GateSpec(name="secrets", check=_recording(log, "secrets"), parallel=True),
        ]

    def test_continue_still_runs_parallel_gates(self, ctx: GateContext) -> None:
        log: list[str] = []
        report = _run(GateRunner(self._specs(log), policy=FailurePolicy.CONTINUE), ctx)
        assert log == ["secrets"]
        assert report.result_for("secrets").outcome is GateOutcome.PASS
        assert report.outcome is RunOutcome.FAILURE

    def test_halt_skips_parallel_gates(self, ctx: GateContext) -> None:
        log: list[str] = []
        report = _run(GateRunner(self._specs(log), policy=FailurePolicy.HALT), ctx)
        assert log == []
        assert report.result_for("secrets").skip_reason is SkipReason.PRIOR_HARD_FAILURE
        assert report.policy is FailurePolicy.HALT


class TestParallelPhase:
    def test_all_failures_are_reported_together(self, ctx: GateContext) -> None:
        def crash(files, ctx):
            raise RuntimeError("crashed")

        runner = GateRunner(
            [
                GateSpec(name="lint", check=_violating("lint errors"), parallel=True),
                GateSpec(name="types", check=crash, parallel=True),
                GateSpec(name="tests", check=_violating("tests failed"), parallel=True),
                GateSpec(name="ok", check=_passing, parallel=True),
            ]
        )
        report = _run(runner, ctx)
        assert [r.gate for r in report.results] == ["lint", "types", "tests", "ok"]
        assert [r.outcome for r in report.results] == [
            GateOutcome.FAIL,
            GateOutcome.FAIL,
            GateOutcome.FAIL,
            GateOutcome.PASS,
        ]
        assert report.counts["fail"] == 3

    def test_parallel_gates_overlap(self, ctx: GateContext) -> None:
        barrier = threading.Barrier(2, timeout=5)

        def meet(files, ctx):
            barrier.wait()

        runner = GateRunner(
            [GateSpec(name="a", check=meet, parallel=True), GateSpec(name="b", check=meet, parallel=True)]
        )
        report = _run(runner, ctx)
        assert report.outcome is RunOutcome.SUCCESS

    def test_results_do_not_depend_on_completion_order(self, ctx: GateContext) -> None:
        def sleeper(delay: float, fail: bool):
            def check(files, ctx):
                time.sleep(delay)
                if fail:
                    raise ViolationError(f"failed after {delay}")

            return check

        def build(delays: tuple[float, float, float]) -> GateRunner:
            return GateRunner(
                [
                    GateSpec(name="x", check=sleeper(delays[0], True), parallel=True),
                    GateSpec(name="y", check=sleeper(delays[1], False), parallel=True),
                    GateSpec(name="z", check=sleeper(delays[2], False), parallel=True, severity=Severity.ADVISORY),
                ]
            )

        first = _run(build((0.0, 0.05, 0.1)), ctx).to_dict(include_timing=False)
        second = _run(build((0.0, 0.05, 0.1)), ctx).to_dict(include_timing=False)
        assert first == second

        reordered = _run(build((0.1, 0.0, 0.05)), ctx).to_dict(include_timing=False)
        outcomes = [(g["gate"], g["outcome"]) for g in reordered["gates"]]
        assert outcomes == [("x", "fail"), ("y", "pass"), ("z", "pass")]

    def test_timeout_forces_fail_without_blocking_other_gates(self, ctx: GateContext) -> None:
        release = threading.Event()

        def hang(files, ctx):
            release.wait(10)

        runner = GateRunner(
            [
                GateSpec(name="hang", check=hang, parallel=True, timeout=0.2),
                GateSpec(name="ok", check=_passing, parallel=True),
            ]
        )
        try:
            started = time.perf_counter()
            report = _run(runner, ctx)
            assert time.perf_counter() - started < 5
        finally:
            release.set()

        hung = report.result_for("hang")
        assert hung.outcome is GateOutcome.FAIL
        assert hung.message == "timed out after 0.2s"
        assert report.result_for("ok").outcome is GateOutcome.PASS


class TestConfiguration:
    def test_autofix_gate_cannot_be_parallel(self) -> None:
        with pytest.raises(GateConfigError, match="sequential"):
            GateRunner([GateSpec(name="fmt", check=_passing, fix=lambda f, c: [], parallel=True)])

    def test_duplicate_names_rejected(self) -> None:
        with pytest.raises(GateConfigError, match="duplicate"):
            GateRunner([GateSpec(name="a", check=_passing), GateSpec(name="a", check=_passing)])

    def test_only_restricts_the_run(self, ctx: GateContext) -> None:
        runner = GateRunner(
            [GateSpec(name="a", check=_passing), GateSpec(name="b", check=_violating())],
            only=["a"],
        )
        report = _run(runner, ctx)
        assert [r.gate for r in report.results] == ["a"]
        assert report.outcome is RunOutcome.SUCCESS

    def test_only_with_unknown_gate(self) -> None:
        with pytest.raises(GateConfigError, match="unknown gate"):
            GateRunner([GateSpec(name="a", check=_passing)], only=["nope"])

    def test_phase_ends_in_terminal_state(self, ctx: GateContext) -> None:
        runner = GateRunner([GateSpec(name="a", check=_violating())])
        assert runner.phase is RunPhase.INIT
        _run(runner, ctx)
        assert runner.phase is RunPhase.FAILURE


class TestTimeoutBudget:
    def test_effective_timeout_is_handed_to_the_gate(self, ctx: GateContext) -> None:
        seen: dict[str, float | None] = {}

        def record(name: str):
            def check(files, ctx):
                seen[name] = ctx.timeout

            return check

        runner = GateRunner(
            [GateSpec(name="own", check=record("own"), timeout=2.0), GateSpec(name="default", check=record("default"))],
            default_timeout=7.0,
        )
        _run(runner, ctx)
        assert seen == {"own": 2.0, "default": 7.0}

    def test_default_timeout_kills_a_hung_tool(self, ctx: GateContext, tmp_path: Path) -> None:
        pid_file = tmp_path / "tool.pid"
        script = f"import os, pathlib, time; pathlib.Path({str(pid_file)!r}).write_text(str(os.getpid())); time.sleep(60)"
        gate = build_gate("hung", "command", {"command": [sys.executable, "-c", script], "pass_filenames": False})

        started = time.perf_counter()
        report = _run(GateRunner([gate], default_timeout=1.0), ctx)
        assert time.perf_counter() - started < 10

        result = report.result_for("hung")
        assert result.outcome is GateOutcome.FAIL
        assert result.message == "timed out after 1s"

        pid = int(pid_file.read_text())
        deadline = time.monotonic() + 5
        while _alive(pid) and time.monotonic() < deadline:
            time.sleep(0.05)
        assert not _alive(pid)


def _alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    return True


class TestFlags:
    def test_no_fix_flag_skips_auto_fix(self, tmp_path: Path) -> None:
        log: list[str] = []

        def fix(files, ctx):
            log.append("fix")
            return []

        ctx = GateContext(
            repo_root=tmp_path,
            diff_range=DiffRange(kind="all"),
            env=MappingProxyType({"GATERUN_NO_FIX": "1"}),
        )
        result = _run(GateRunner([GateSpec(name="format", check=_recording(log, "check"), fix=fix)]), ctx)
        assert log == ["check"]
        assert result.result_for("format").fixed_files == ()
