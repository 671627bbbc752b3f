"""Detect leftover ``console.log`` calls in JavaScript and TypeScript sources."""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from gaterun.context import GateContext
from gaterun.errors import ViolationError
from gaterun.gates.base import build_spec
from gaterun.types import FileSet, GateSpec, Severity

SCRIPT_PATTERNS = ("*.js", "*.jsx", "*.mjs", "*.cjs", "*.ts", "*.tsx", "*.vue", "*.svelte")

_CALL = re.compile(r"\bconsole\.log\s*\(")


def strip_line_comment(line: str) -> str:
    """Drop a trailing ``//`` comment, ignoring ``//`` inside string literals."""
    quote = None
    escaped = False
    for i, char in enumerate(line):
        if escaped:
            escaped = False
        elif char == "\\":
            escaped = True
        elif quote:
            if char == quote:
                quote = None
        elif char in "\"'`":
            quote = char
        elif line.startswith("//", i):
            return line[:i]
    return line


def find_console_logs(text: str) -> list[int]:
    """Line numbers with a ``console.log(`` call outside line comments."""
    hits = []
    for lineno, line in enumerate(text.splitlines(), 1):
        code = strip_line_comment(line)
        if _CALL.search(code):
            hits.append(lineno)
    return hits


def build_console_log_gate(name: str, options: Mapping[str, Any]) -> GateSpec:
    def check(files: FileSet, ctx: GateContext) -> str | None:
        offenders: list[str] = []
        locations: list[str] = []
        for path in files:
            text = ctx.read_text(path)
            if text is None:
                continue
            lines = find_console_logs(text)
            if lines:
                offenders.append(path)
                locations.append(f"  {path}: line {', '.join(str(n) for n in lines)}")
        if offenders:
            raise ViolationError(
                f"console.log found in {len(offenders)} file(s):\n" + "\n".join(locations),
                files=offenders,
            )
        return None

    return build_spec(
        name,
        options,
        check,
        kind="console-log",
        severity=Severity.ADVISORY,
        parallel=True,
        patterns=SCRIPT_PATTERNS,
        description="flags console.log calls",
    )
