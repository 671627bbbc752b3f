"""Complexity trend gate.

Runs a complexity tool, extracts a percentage score from its output and
compares it with the score recorded for the parent of HEAD. Scores are cached
on disk keyed by the HEAD sha at measurement time, so the entry stored by the
previous commit becomes the next commit's baseline.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from gaterun.artifacts import read_json, write_json
from gaterun.context import GateContext
from gaterun.errors import GateConfigError, ViolationError
from gaterun.exec import run_command
from gaterun.gates.base import as_argv, as_number, build_spec
from gaterun.types import FileSet, GateSpec, Severity

logger = logging.getLogger(__name__)

DEFAULT_SCORE_PATTERN = r"(\d+(?:\.\d+)?)\s*%"


class TrendCache:
    """Per-gate ``{commit: score}`` store."""

    def __init__(self, path: Path):
        self.path = path

    def load(self) -> dict[str, float]:
        data = read_json(self.path, default={})
        if not isinstance(data, dict):
            logger.warning("ignoring malformed trend cache %s", self.path)
            return {}
        return {str(k): float(v) for k, v in data.items() if isinstance(v, int | float)}

    def get(self, commit: str | None) -> float | None:
        if commit is None:
            return None
        return self.load().get(commit)

    def put(self, commit: str, score: float) -> None:
        data = self.load()
        data[commit] = score
        write_json(self.path, data, indent=2)


def extract_score(output: str, pattern: re.Pattern[str]) -> float | None:
    match = pattern.search(output)
    if match is None:
        return None
    return float(match.group(1) if match.groups() else match.group(0))


def build_complexity_gate(name: str, options: Mapping[str, Any]) -> GateSpec:
    command = as_argv(name, options, "command", required=True)
    assert command is not None
    try:
        pattern = re.compile(str(options.get("score_pattern", DEFAULT_SCORE_PATTERN)))
    except re.error as exc:
        raise GateConfigError(f"gate {name!r}: invalid score_pattern: {exc}") from exc
    tolerance = as_number(name, options, "tolerance", 0.0) or 0.0
    max_score = as_number(name, options, "max_score")
    pass_filenames = bool(options.get("pass_filenames", False))

    def check(files: FileSet, ctx: GateContext) -> str | None:
        argv = [*command, *files] if pass_filenames else list(command)
        result = run_command(argv, cwd=ctx.repo_root, check=False, timeout=ctx.timeout)
        if result.returncode != 0:
            raise ViolationError(result.output or f"{command[0]} exited with status {result.returncode}")
        score = extract_score(result.output, pattern)
        if score is None:
            raise ViolationError(f"no score matching {pattern.pattern!r} in {command[0]} output")

        cache_dir = ctx.cache_dir or ctx.repo_root / ".gaterun"
        cache = TrendCache(cache_dir / f"{name}.trend.json")
        baseline = cache.get(ctx.resolve("HEAD~1")) if ctx.head else None
        if ctx.head:
            cache.put(ctx.head, score)

        problems = []
        if max_score is not None and score > max_score:
            problems.append(f"complexity {score:g} exceeds the limit of {max_score:g}")
        if baseline is not None and score - baseline > tolerance:
            problems.append(f"complexity rose from {baseline:g} to {score:g}")
        if problems:
            raise ViolationError("\n".join(problems))

        if baseline is None:
            return f"complexity {score:g} (no baseline)"
        return f"complexity {score:g} (baseline {baseline:g})"

    return build_spec(
        name,
        options,
        check,
        kind="complexity",
        severity=Severity.ADVISORY,
        parallel=True,
        patterns=("*",),
        description="tracks the complexity score trend",
    )
