"""Tests for the complexity trend gate."""

from __future__ import annotations

import json
import re
import sys
from pathlib import Path

from gaterun.context import build_context
from gaterun.gates import build_gate
from gaterun.gates.complexity import DEFAULT_SCORE_PATTERN, TrendCache, extract_score
from gaterun.runner import GateRunner
from gaterun.types import FileSet, GateOutcome

REPORT_SCRIPT = "import pathlib; print('Average complexity: ' + pathlib.Path('score.txt').read_text().strip() + '%')"


def _run(repo: Path, score: str, **options):
    (repo / "score.txt").write_text(score)
    gate = build_gate("complexity", "complexity", {"command": [sys.executable, "-c", REPORT_SCRIPT], **options})
    runner = GateRunner([gate])
    return runner.run(repo, "all", context=build_context(repo, "all"), files=FileSet.of(["src/app.py"]))


def test_extract_score() -> None:
    pattern = re.compile(DEFAULT_SCORE_PATTERN)
    assert extract_score("Complexity: 42.5 %", pattern) == 42.5
    assert extract_score("no numbers", pattern) is None


def test_first_measurement_has_no_baseline(git_repo: Path) -> None:
    result = _run(git_repo, "10").result_for("complexity")
    assert result.outcome is GateOutcome.PASS
    assert result.message == "complexity 10 (no baseline)"


def test_rising_score_warns_against_parent_commit(git_repo: Path, stage, commit) -> None:
    _run(git_repo, "10")
    stage({"src/app.py": "def f():\n    return 1\n"})
    commit("more code")

    result = _run(git_repo, "15").result_for("complexity")
    assert result.outcome is GateOutcome.WARN
    assert "rose from 10 to 15" in result.message

    again = _run(git_repo, "15").result_for("complexity")
    assert again.outcome is result.outcome
    assert again.message == result.message


def test_rise_within_tolerance_passes(git_repo: Path, stage, commit) -> None:
    _run(git_repo, "10")
    stage({"src/app.py": "x = 1\n"})
    commit()

    result = _run(git_repo, "10.5", tolerance=1).result_for("complexity")
    assert result.outcome is GateOutcome.PASS
    assert result.message == "complexity 10.5 (baseline 10)"


def test_max_score(git_repo: Path) -> None:
    result = _run(git_repo, "80", max_score=50).result_for("complexity")
    assert result.outcome is GateOutcome.WARN
    assert "exceeds the limit of 50" in result.message


def test_missing_score_in_output(git_repo: Path) -> None:
    result = _run(git_repo, "n/a").result_for("complexity")
    assert result.outcome is GateOutcome.WARN
    assert "no score" in result.message


def test_cache_is_keyed_by_head(git_repo: Path, gitcmd) -> None:
    _run(git_repo, "7")
    head = gitcmd(git_repo, "rev-parse", "HEAD").strip()
    cache_file = git_repo / ".gaterun" / "complexity.trend.json"
    assert json.loads(cache_file.read_text()) == {head: 7.0}
    assert TrendCache(cache_file).get(head) == 7.0
    assert TrendCache(cache_file).get(None) is None
