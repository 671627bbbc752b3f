"""Install and remove the gaterun block in git hook scripts."""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

from gaterun.errors import GateRunError
from gaterun.exec import run_git

HOOK_MARKER_BEGIN = "# >>> GATERUN HOOK BEGIN >>>"
HOOK_MARKER_END = "# <<< GATERUN HOOK END <<<"

HOOK_RANGES: dict[str, str] = {
    "pre-commit": "staged",
    "pre-push": "push",
}


class HookRefusal(GateRunError):
    """Raised when a hook file cannot be changed safely."""


@dataclass(frozen=True)
class HookChange:
    path: Path
    changed: bool
    backup_path: Path | None


def render_hook_block(hook: str) -> str:
    if hook not in HOOK_RANGES:
        raise ValueError(f"Unknown hook: {hook!r}. Valid hooks: {', '.join(sorted(HOOK_RANGES))}")
    return "\n".join(
        [
            HOOK_MARKER_BEGIN,
            f"gaterun run --range {HOOK_RANGES[hook]} || exit $?",
            HOOK_MARKER_END,
            "",
        ]
    )


def _locate_block(contents: str) -> tuple[int, int] | None:
    begin_idx = contents.find(HOOK_MARKER_BEGIN)
    end_idx = contents.find(HOOK_MARKER_END)

    if begin_idx != -1 and contents.find(HOOK_MARKER_BEGIN, begin_idx + 1) != -1:
        raise HookRefusal("Multiple GATERUN HOOK begin markers found.")
    if end_idx != -1 and contents.find(HOOK_MARKER_END, end_idx + 1) != -1:
        raise HookRefusal("Multiple GATERUN HOOK end markers found.")

    if begin_idx == -1 and end_idx == -1:
        return None
    if begin_idx == -1 or end_idx == -1 or end_idx < begin_idx:
        raise HookRefusal("Malformed GATERUN HOOK markers.")

    start = contents.rfind("\n", 0, begin_idx)
    start = 0 if start == -1 else start + 1
    end_line = contents.find("\n", end_idx)
    end = len(contents) if end_line == -1 else end_line + 1
    return (start, end)


def apply_hook_block(contents: str, *, block: str, remove: bool, force: bool = False) -> str:
    """Return ``contents`` with the gaterun block inserted, replaced or removed.

    A non-empty hook without a gaterun block belongs to someone else and is only
    replaced when ``force`` is set.
    """
    span = _locate_block(contents)

    if span is None:
        if remove:
            return contents
        if contents.strip() and not force:
            raise HookRefusal("Refused: existing hook was not installed by gaterun (use --force to replace it).")
        return f"#!/bin/sh\n{block}"

    start, end = span
    if remove:
        remaining = f"{contents[:start]}{contents[end:]}"
        meaningful = [line for line in remaining.splitlines() if line.strip() and not line.startswith("#!")]
        return remaining if meaningful else ""
    return f"{contents[:start]}{block}{contents[end:]}"


def hooks_dir(repo_root: Path) -> Path:
    """Hooks directory, honouring ``core.hooksPath``."""
    out = run_git(["rev-parse", "--git-path", "hooks"], repo_root=repo_root).stdout.strip()
    path = Path(out)
    return path if path.is_absolute() else repo_root / path


def _atomic_write(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        with tempfile.NamedTemporaryFile(
            mode="w",
            encoding="utf-8",
            dir=path.parent,
            delete=False,
            prefix=f".{path.name}.",
            suffix=".gaterun.tmp",
        ) as tmp_file:
            tmp_file.write(content)
            tmp_path = Path(tmp_file.name)
        os.chmod(tmp_path, 0o755)
        os.replace(tmp_path, path)
    except Exception:
        if "tmp_path" in locals() and tmp_path.exists():
            tmp_path.unlink()
        raise


def install_hook(repo_root: Path, hook: str = "pre-commit", *, force: bool = False) -> HookChange:
    return _persist(repo_root, hook, remove=False, force=force)


def uninstall_hook(repo_root: Path, hook: str = "pre-commit") -> HookChange:
    return _persist(repo_root, hook, remove=True, force=False)


def _persist(repo_root: Path, hook: str, *, remove: bool, force: bool) -> HookChange:
    path = hooks_dir(repo_root) / hook
    old = path.read_text(encoding="utf-8") if path.exists() else ""
    new = apply_hook_block(old, block=render_hook_block(hook), remove=remove, force=force)

    if new == old:
        return HookChange(path=path, changed=False, backup_path=None)

    backup_path = None
    if old:
        backup_path = path.with_name(f"{path.name}.gaterun.bak")
        _atomic_write(backup_path, old)

    if new:
        _atomic_write(path, new)
    else:
        path.unlink()
    return HookChange(path=path, changed=True, backup_path=backup_path)
