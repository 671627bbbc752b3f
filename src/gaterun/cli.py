"""gaterun command line interface."""

from __future__ import annotations

import logging
import sys
from dataclasses import replace
from pathlib import Path

import typer
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from gaterun import __version__
from gaterun.config import load_config
from gaterun.context import build_context
from gaterun.errors import GateRunError
from gaterun.hooks import HOOK_RANGES, install_hook, uninstall_hook
from gaterun.report import console, make_console, render_report, write_json_report, write_markdown_report
from gaterun.runner import GateRunner
from gaterun.selector import PUSH, parse_push_refs, parse_range, push_range, resolve_repo_root
from gaterun.types import FailurePolicy

cli = typer.Typer(
    name="gaterun",
    help="gaterun - run quality gates against staged or changed files",
    no_args_is_help=True,
)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(name)s: %(message)s",
        handlers=[RichHandler(console=make_console(stderr=True), show_time=False, show_path=False)],
        force=True,
    )


def _fail(exc: Exception) -> typer.Exit:
    console.print(f"[bold red]Error:[/bold red] {escape(str(exc))}")
    return typer.Exit(2)


def _version_option_callback(value: bool) -> None:
    """Handle eager --version option."""
    if value:
        typer.echo(__version__)
        raise typer.Exit()


@cli.callback()
def _cli_callback(
    version: bool = typer.Option(
        False,
        "--version",
        help="Show gaterun version and exit.",
        is_eager=True,
        callback=_version_option_callback,
    ),
) -> None:
    _ = version


@cli.command(name="run")
def run_cmd(
    diff_range: str = typer.Option(
        "staged",
        "--range",
        "-r",
        help="Files to check: staged, all, upstream, push (refs on stdin, as in a pre-push hook), or a commit range A..B",
    ),
    gates: list[str] | None = typer.Option(
        None,
        "--gate",
        "-g",
        help="Run only this gate (repeatable)",
    ),
    config: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        help="Config file (default: .gaterun.yaml at the repo root)",
    ),
    policy: FailurePolicy | None = typer.Option(
        None,
        "--policy",
        help="Whether a sequential hard failure also skips parallel gates (halt) or not (continue)",
    ),
    timeout: float | None = typer.Option(
        None,
        "--timeout",
        help="Default per-gate timeout in seconds",
    ),
    json_out: Path | None = typer.Option(None, "--json", help="Write the run report as JSON"),
    markdown_out: Path | None = typer.Option(None, "--markdown", help="Write the run report as Markdown"),
    repo_root: Path | None = typer.Option(None, "--repo-root", help="Repository to check (default: cwd)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log phases and commands to stderr"),
) -> None:
    """Run the configured gates. Exits 0 on success, 1 on failure."""
    _configure_logging(verbose)
    try:
        root = resolve_repo_root(repo_root)
        run_config = load_config(root, config)
        if policy is not None:
            run_config = replace(run_config, policy=policy)
        if timeout is not None:
            run_config = replace(run_config, timeout=timeout)

        runner = GateRunner(
            run_config.gate_specs(),
            policy=run_config.policy,
            default_timeout=run_config.timeout,
            max_workers=run_config.max_workers,
            only=gates or None,
            skip=run_config.skip,
        )
        if diff_range.strip() == PUSH:
            pushed = sys.stdin.read() if not sys.stdin.isatty() else ""
            parsed = push_range(root, parse_push_refs(pushed), run_config.base_branch)
            if parsed is None:
                console.print("[dim]Nothing to check: no refs are being pushed.[/dim]")
                raise typer.Exit(0)
        else:
            parsed = parse_range(diff_range)
        ctx = build_context(root, parsed, base_branch=run_config.base_branch)
        report = runner.run(root, parsed, context=ctx)
    except GateRunError as exc:
        raise _fail(exc) from exc

    render_report(report)
    if json_out is not None:
        write_json_report(report, json_out)
    if markdown_out is not None:
        write_markdown_report(report, markdown_out)
    raise typer.Exit(report.exit_code)


@cli.command(name="list")
def list_cmd(
    config: Path | None = typer.Option(None, "--config", "-c", help="Config file"),
    repo_root: Path | None = typer.Option(None, "--repo-root", help="Repository (default: cwd)"),
) -> None:
    """Show the configured gates in declaration order."""
    try:
        root = resolve_repo_root(repo_root)
        run_config = load_config(root, config)
        specs = run_config.gate_specs()
    except GateRunError as exc:
        raise _fail(exc) from exc

    table = Table(title=f"gates ({run_config.source or 'built-in defaults'})")
    table.add_column("gate")
    table.add_column("kind")
    table.add_column("severity")
    table.add_column("phase")
    table.add_column("patterns")
    for spec in specs:
        name = spec.name
        if spec.name in run_config.skip:
            name = f"{name} (disabled)"
        table.add_row(
            escape(name),
            spec.kind,
            spec.severity.value,
            "parallel" if spec.parallel else "sequential",
            escape(" ".join(spec.patterns)),
        )
    console.print(table)
    console.print(f"[dim]policy: {run_config.policy.value}  timeout: {run_config.timeout:g}s[/dim]")


def _check_hook_name(hook: str) -> None:
    if hook not in HOOK_RANGES:
        console.print(f"[bold red]Unknown hook:[/bold red] {escape(hook)}")
        console.print(f"Valid hooks: {', '.join(sorted(HOOK_RANGES))}")
        raise typer.Exit(2)


@cli.command(name="install")
def install_cmd(
    hook: str = typer.Option("pre-commit", "--hook", help="pre-commit or pre-push"),
    force: bool = typer.Option(False, "--force", help="Replace a hook not installed by gaterun"),
    repo_root: Path | None = typer.Option(None, "--repo-root", help="Repository (default: cwd)"),
) -> None:
    """Install gaterun into a git hook."""
    _check_hook_name(hook)
    try:
        change = install_hook(resolve_repo_root(repo_root), hook, force=force)
    except GateRunError as exc:
        raise _fail(exc) from exc

    if not change.changed:
        console.print(f"[green]Already installed:[/green] {change.path}")
        return
    console.print(f"[green]✓ Installed[/green] {change.path}")
    if change.backup_path:
        console.print(f"[cyan]Backup:[/cyan] {change.backup_path}")


@cli.command(name="uninstall")
def uninstall_cmd(
    hook: str = typer.Option("pre-commit", "--hook", help="pre-commit or pre-push"),
    repo_root: Path | None = typer.Option(None, "--repo-root", help="Repository (default: cwd)"),
) -> None:
    """Remove gaterun from a git hook."""
    _check_hook_name(hook)
    try:
        change = uninstall_hook(resolve_repo_root(repo_root), hook)
    except GateRunError as exc:
        raise _fail(exc) from exc

    if not change.changed:
        console.print("[green]No changes.[/green]")
        return
    console.print(f"[green]✓ Removed gaterun from[/green] {change.path}")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
