"""Scan changed content for committed credentials."""

from __future__ import annotations

import re
from collections.abc import Mapping
from fnmatch import fnmatch
from typing import Any

from gaterun.context import GateContext
from gaterun.errors import ViolationError
from gaterun.gates.base import as_patterns, build_spec
from gaterun.types import FileSet, GateSpec, Severity

ALLOW_PRAGMA = "gaterun: allow-secret"

RULES: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("private key", re.compile(r"-----BEGIN (?:RSA |EC |DSA |OPENSSH |PGP |ENCRYPTED )?PRIVATE KEY(?: BLOCK)?-----")),
    ("AWS access key id", re.compile(r"\b(?:AKIA|ASIA)[0-9A-Z]{16}\b")),
    ("GitHub token", re.compile(r"\bgh[pousr]_[A-Za-z0-9]{36,}\b")),
    ("Slack token", re.compile(r"\bxox[abprs]-[A-Za-z0-9-]{10,}")),
    (
        "hardcoded credential",
        re.compile(
            r"(?i)\b(?:password|passwd|secret|api[_-]?key|access[_-]?token|auth[_-]?token)\b"
            r"[\"']?\s*[:=]\s*[\"'][^\"'\s]{8,}[\"']"
        ),
    ),
)


def scan_text(text: str) -> list[tuple[int, str]]:
    """Return ``(line, rule)`` pairs; the matched value itself is never reported."""
    findings = []
    for lineno, line in enumerate(text.splitlines(), 1):
        if ALLOW_PRAGMA in line:
            continue
        for rule, pattern in RULES:
            if pattern.search(line):
                findings.append((lineno, rule))
                break
    return findings


def build_secrets_gate(name: str, options: Mapping[str, Any]) -> GateSpec:
    allow_files = as_patterns(name, options.get("allow_files", []))

    def check(files: FileSet, ctx: GateContext) -> str | None:
        offenders: list[str] = []
        lines: list[str] = []
        for path in files:
            if any(fnmatch(path, pattern) for pattern in allow_files):
                continue
            text = ctx.read_text(path)
            if text is None:
                continue
            findings = scan_text(text)
            if findings:
                offenders.append(path)
                lines.extend(f"  {path}:{lineno}: {rule}" for lineno, rule in findings)
        if offenders:
            raise ViolationError(
                f"possible secrets in {len(offenders)} file(s):\n"
                + "\n".join(lines)
                + f"\nRemove them, or mark a false positive with '{ALLOW_PRAGMA}'.",
                files=offenders,
            )
        return None

    return build_spec(
        name,
        options,
        check,
        kind="secrets",
        severity=Severity.HARD,
        parallel=True,
        patterns=("*",),
        description="blocks committed credentials",
    )
