"""Console rendering and report files for gate runs."""

from __future__ import annotations

import os
from pathlib import Path
from typing import TextIO

from rich.console import Console
from rich.markup import escape

from gaterun.artifacts import write_json
from gaterun.types import GateOutcome, GateResult, RunOutcome, RunReport

LABELS: dict[GateOutcome, tuple[str, str]] = {
    GateOutcome.PASS: ("PASS", "bold green"),
    GateOutcome.WARN: ("WARN", "bold yellow"),
    GateOutcome.FAIL: ("FAIL", "bold red"),
    GateOutcome.SKIPPED: ("SKIP", "dim"),
}

SKIP_TEXT = {
    "not_applicable": "not applicable",
    "prior_hard_failure": "skipped: prior hard failure",
    "disabled": "disabled by GATERUN_SKIP",
}


def color_enabled() -> bool:
    return os.getenv("GATERUN_COLOR", "1") == "1"


def make_console(stderr: bool = False) -> Console:
    return Console(stderr=stderr, no_color=not color_enabled(), highlight=False)


console = make_console()


def _skip_text(result: GateResult) -> str:
    if result.skip_reason is None:
        return "skipped"
    text = SKIP_TEXT.get(result.skip_reason.value, result.skip_reason.value)
    if result.message:
        text = f"{text}: {result.message}"
    return text


def summary_line(report: RunReport) -> str:
    counts = report.counts
    parts = [
        f"{counts['pass']} passed",
        f"{counts['warn']} warning(s)",
        f"{counts['fail']} failed",
        f"{counts['skipped']} skipped",
    ]
    return f"{', '.join(parts)} in {report.elapsed_seconds:.2f}s"


def render_report(report: RunReport, out: Console | None = None) -> None:
    """Print one line per gate, full diagnostics for failures and warnings, then a summary."""
    target = out or console
    width = max((len(r.gate) for r in report.results), default=0)

    for result in report.results:
        label, style = LABELS[result.outcome]
        name = escape(result.gate.ljust(width))
        if result.outcome is GateOutcome.SKIPPED:
            target.print(f"[{style}]{label}[/{style}]  {name}  [dim]({escape(_skip_text(result))})[/dim]")
            continue

        line = f"[{style}]{label}[/{style}]  {name}  [dim]{result.elapsed_seconds:.2f}s[/dim]"
        if result.outcome is GateOutcome.PASS and result.message:
            line = f"{line}  [dim]{escape(result.message)}[/dim]"
        if result.fixed_files:
            line = f"{line}  [cyan]fixed {len(result.fixed_files)} file(s)[/cyan]"
        target.print(line)

        if result.outcome in (GateOutcome.FAIL, GateOutcome.WARN) and result.message:
            for message_line in result.message.splitlines():
                target.print(f"      {escape(message_line)}")

    target.print()
    if report.outcome is RunOutcome.SUCCESS:
        target.print(f"[bold green]✓ gates passed[/bold green]  {summary_line(report)}")
    else:
        target.print(f"[bold red]✗ gates failed[/bold red]  {summary_line(report)}")


def write_json_report(report: RunReport, path: Path) -> None:
    write_json(path, report.to_dict(), indent=2)


def write_markdown_report(report: RunReport, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        _write_markdown(f, report)


def _write_markdown(f: TextIO, report: RunReport) -> None:
    """Write human-readable markdown report."""
    f.write("# Gate Run Report\n\n")

    status_emoji = "✅" if report.outcome is RunOutcome.SUCCESS else "❌"
    f.write(f"**Status**: {status_emoji} {report.outcome.value.upper()}\n\n")
    f.write(f"**Range**: `{report.diff_range}`  \n")
    f.write(f"**Files**: {report.file_count}  \n")
    f.write(f"**Failure policy**: {report.policy.value}\n\n")

    f.write("## Summary\n\n")
    f.write(f"- Passed: {report.counts['pass']}\n")
    f.write(f"- Warnings: {report.counts['warn']}\n")
    f.write(f"- Failed: {report.counts['fail']}\n")
    f.write(f"- Skipped: {report.counts['skipped']}\n\n")

    f.write("## Gates\n\n")
    for result in report.results:
        symbol = {"pass": "✅", "warn": "⚠️", "fail": "❌", "skipped": "⏭️"}[result.outcome.value]
        f.write(f"### {symbol} {result.gate}\n\n")
        if result.outcome is GateOutcome.SKIPPED:
            f.write(f"{_skip_text(result)}\n\n")
            continue
        f.write(f"Elapsed: {result.elapsed_seconds:.2f}s\n\n")
        if result.message:
            f.write("```\n")
            f.write(result.message.rstrip("\n") + "\n")
            f.write("```\n\n")
        if result.files:
            f.write("**Files:**\n\n")
            for path in result.files:
                f.write(f"- `{path}`\n")
            f.write("\n")
        if result.fixed_files:
            f.write("**Auto-fixed:**\n\n")
            for path in result.fixed_files:
                f.write(f"- `{path}`\n")
            f.write("\n")

    f.write("## Exit Code\n\n")
    if report.outcome is RunOutcome.SUCCESS:
        f.write("0 (success - all hard gates passed)\n")
    else:
        f.write("1 (failure - a gate failed)\n")
