"""Read-only repository context threaded through every gate call."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType

from gaterun.exec import run_git
from gaterun.selector import DiffRange, parse_range, read_previous_blob, read_text

ENV_PREFIX = "GATERUN_"
DEFAULT_CACHE_DIRNAME = ".gaterun"


@dataclass(frozen=True)
class GateContext:
    """Repository metadata shared read-only by all gates of a run."""

    repo_root: Path
    diff_range: DiffRange
    branch: str | None = None
    head: str | None = None
    merge_base: str | None = None
    env: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    cache_dir: Path | None = None
    # per-gate budget in seconds, set by the runner for each gate
    timeout: float | None = None

    def read_text(self, path: str) -> str | None:
        """Content of ``path`` as seen by this run (``None`` for binary files)."""
        return read_text(self.repo_root, self.diff_range, path)

    def read_previous(self, path: str) -> bytes | None:
        """Content of ``path`` before this change, ``None`` when it is new."""
        return read_previous_blob(self.repo_root, self.diff_range, path)

    def resolve(self, ref: str) -> str | None:
        """Resolve ``ref`` to a commit sha, or ``None``."""
        return _rev_parse(self.repo_root, ref)

    def flag(self, name: str, default: str = "") -> str:
        """Value of ``GATERUN_<name>`` captured at start-up."""
        return self.env.get(f"{ENV_PREFIX}{name}", default)


def _rev_parse(repo_root: Path, ref: str) -> str | None:
    out = run_git(["rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}"], repo_root=repo_root, check=False)
    sha = out.stdout.strip()
    return sha if out.returncode == 0 and sha else None


def current_branch(repo_root: Path) -> str | None:
    """Return the current branch name, or None when detached."""
    out = run_git(["symbolic-ref", "--short", "-q", "HEAD"], repo_root=repo_root, check=False)
    branch = out.stdout.strip()
    return branch if out.returncode == 0 and branch else None


def gaterun_env(environ: Mapping[str, str] | None = None) -> Mapping[str, str]:
    """Snapshot of ``GATERUN_*`` environment flags."""
    source = os.environ if environ is None else environ
    return MappingProxyType({k: v for k, v in source.items() if k.startswith(ENV_PREFIX)})


def build_context(
    repo_root: Path,
    diff_range: str | DiffRange,
    *,
    base_branch: str | None = "main",
    environ: Mapping[str, str] | None = None,
    cache_dir: Path | None = None,
) -> GateContext:
    """Collect branch, HEAD and merge-base for ``repo_root``."""
    parsed = diff_range if isinstance(diff_range, DiffRange) else parse_range(diff_range)
    head = _rev_parse(repo_root, "HEAD")
    merge_base = None
    if head and base_branch:
        out = run_git(["merge-base", "HEAD", base_branch], repo_root=repo_root, check=False)
        if out.returncode == 0:
            merge_base = out.stdout.strip() or None

    return GateContext(
        repo_root=repo_root,
        diff_range=parsed,
        branch=current_branch(repo_root),
        head=head,
        merge_base=merge_base,
        env=gaterun_env(environ),
        cache_dir=cache_dir or repo_root / DEFAULT_CACHE_DIRNAME,
    )
