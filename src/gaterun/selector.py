"""File selection from git diff state."""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from gaterun.errors import RepositoryStateError
from gaterun.exec import ExecError, run_git
from gaterun.types import FileSet

logger = logging.getLogger(__name__)

RangeKind = Literal["staged", "range", "all"]

STAGED = "staged"
ALL = "all"
UPSTREAM = "upstream"
PUSH = "push"

ZERO_SHA = "0" * 40
EMPTY_TREE = "4b825dc642cb6eb9a060e54bf8d69288fbee4904"


@dataclass(frozen=True)
class DiffRange:
    """Parsed diff range specifier."""

    kind: RangeKind
    base: str | None = None
    head: str | None = None
    symmetric: bool = False

    @property
    def spec(self) -> str:
        if self.kind != "range":
            return self.kind
        sep = "..." if self.symmetric else ".."
        return f"{self.base}{sep}{self.head}"


def parse_range(spec: str) -> DiffRange:
    """Parse ``staged``, ``all``, ``upstream`` or ``A..B`` / ``A...B``."""
    value = spec.strip()
    if value in ("", STAGED):
        return DiffRange(kind="staged")
    if value == ALL:
        return DiffRange(kind="all")
    if value == UPSTREAM:
        return DiffRange(kind="range", base="@{upstream}", head="HEAD")

    symmetric = "..." in value
    sep = "..." if symmetric else ".."
    if sep not in value:
        raise RepositoryStateError(
            f"unrecognized diff range {spec!r}: expected staged, all, upstream or A..B"
        )
    base, head = value.split(sep, 1)
    return DiffRange(kind="range", base=base or "HEAD", head=head or "HEAD", symmetric=symmetric)


def resolve_repo_root(start: Path | None = None) -> Path:
    """Resolve the git top-level directory containing ``start``."""
    probe = (start or Path.cwd()).resolve()
    try:
        out = run_git(["rev-parse", "--show-toplevel"], repo_root=probe)
    except (ExecError, OSError) as exc:
        raise RepositoryStateError(f"not a git repository: {probe}") from exc
    root = out.stdout.strip()
    if not root:
        raise RepositoryStateError(f"unable to resolve git repo root from {probe}: empty output")
    return Path(root).resolve()


def _verify_commit(repo_root: Path, ref: str) -> str:
    out = run_git(["rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}"], repo_root=repo_root, check=False)
    sha = out.stdout.strip()
    if out.returncode != 0 or not sha:
        raise RepositoryStateError(f"cannot resolve {ref!r} to a commit (no commits, or unknown ref)")
    return sha


def _split_z(output: str) -> list[str]:
    return [item for item in output.split("\0") if item]


def select_files(
    repo_root: Path,
    diff_range: str | DiffRange = STAGED,
    include: Sequence[str] = (),
) -> FileSet:
    """Compute the FileSet for ``diff_range``, optionally filtered by ``include``.

    Deleted paths are never selected.

    Raises:
        RepositoryStateError: The repository or the range cannot be resolved.
    """
    parsed = diff_range if isinstance(diff_range, DiffRange) else parse_range(diff_range)
    root = resolve_repo_root(repo_root)

    if parsed.kind == "staged":
        args = ["diff", "--cached", "--name-only", "--diff-filter=ACMR", "-z"]
    elif parsed.kind == "all":
        args = ["ls-files", "-z"]
    else:
        assert parsed.base is not None and parsed.head is not None
        if parsed.base != EMPTY_TREE:
            _verify_commit(root, parsed.base)
        _verify_commit(root, parsed.head)
        revs = [parsed.spec] if parsed.symmetric else [parsed.base, parsed.head]
        args = ["diff", "--name-only", "--diff-filter=ACMR", "-z", *revs]

    try:
        out = run_git(args, repo_root=root)
        paths = _split_z(out.stdout)
        if parsed.kind == "all":
            # tracked but removed from the working tree
            deleted = set(_split_z(run_git(["ls-files", "-z", "--deleted"], repo_root=root).stdout))
            paths = [p for p in paths if p not in deleted]
    except ExecError as exc:
        raise RepositoryStateError(f"unable to list files for {parsed.spec}: {exc}") from exc

    files = FileSet.of(paths)
    if include:
        files = files.filter(include)
    logger.debug("selected %d file(s) for %s", len(files), parsed.spec)
    return files


def read_blob(repo_root: Path, diff_range: DiffRange, path: str) -> bytes:
    """Return the bytes a gate should inspect for ``path`` under ``diff_range``.

    Staged runs read the index blob, ranges read the head revision, and
    ``all`` reads the working tree.
    """
    if diff_range.kind == "all":
        return (repo_root / path).read_bytes()

    obj = f":{path}" if diff_range.kind == "staged" else f"{diff_range.head}:{path}"
    completed = subprocess.run(
        ["git", "show", obj],
        cwd=repo_root,
        capture_output=True,
        check=False,
    )
    if completed.returncode != 0:
        stderr = completed.stderr.decode("utf-8", errors="replace").strip()
        raise RepositoryStateError(f"git show {obj} failed: {stderr}")
    return completed.stdout


def read_text(repo_root: Path, diff_range: DiffRange, path: str) -> str | None:
    """Like :func:`read_blob` but decoded; ``None`` for binary content."""
    data = read_blob(repo_root, diff_range, path)
    if b"\0" in data[:8192]:
        return None
    return data.decode("utf-8", errors="replace")


def read_previous_blob(repo_root: Path, diff_range: DiffRange, path: str) -> bytes | None:
    """Bytes of ``path`` before the change under inspection, or ``None`` if it did not exist.

    Staged and ``all`` runs compare against HEAD; ranges compare against their
    base (the merge-base for ``A...B``).
    """
    if diff_range.kind != "range":
        base = "HEAD"
    elif diff_range.base == EMPTY_TREE:
        return None
    elif diff_range.symmetric:
        out = run_git(
            ["merge-base", diff_range.base or "HEAD", diff_range.head or "HEAD"],
            repo_root=repo_root,
            check=False,
        )
        if out.returncode != 0:
            return None
        base = out.stdout.strip()
    else:
        base = diff_range.base or "HEAD"

    completed = subprocess.run(
        ["git", "show", f"{base}:{path}"],
        cwd=repo_root,
        capture_output=True,
        check=False,
    )
    return completed.stdout if completed.returncode == 0 else None


def restage(repo_root: Path, paths: Sequence[str]) -> None:
    """Re-add auto-fixed files to the index."""
    if not paths:
        return
    logger.debug("restaging %d file(s)", len(paths))
    run_git(["add", "--", *paths], repo_root=repo_root)


@dataclass(frozen=True)
class PushRef:
    """One line of the ref list git feeds to a pre-push hook."""

    local_ref: str
    local_sha: str
    remote_ref: str
    remote_sha: str

    @property
    def is_delete(self) -> bool:
        return self.local_sha == ZERO_SHA

    @property
    def is_new_branch(self) -> bool:
        return self.remote_sha == ZERO_SHA


def parse_push_refs(text: str) -> list[PushRef]:
    """Parse ``<local ref> <local sha> <remote ref> <remote sha>`` lines."""
    refs = []
    for line in text.splitlines():
        fields = line.split()
        if not fields:
            continue
        if len(fields) != 4:
            raise RepositoryStateError(f"malformed pre-push ref line: {line!r}")
        refs.append(PushRef(*fields))
    return refs


def push_range(repo_root: Path, refs: Sequence[PushRef], base_branch: str | None = "main") -> DiffRange | None:
    """Diff range covering the commits a push would publish, or ``None`` when nothing is pushed.

    An existing remote branch is diffed from its remote sha. A new branch is
    diffed from its merge-base with ``base_branch``, or from the empty tree
    when there is none. Only the first updated ref is considered.
    """
    updates = [ref for ref in refs if not ref.is_delete]
    if not updates:
        return None
    ref = updates[0]
    if len(updates) > 1:
        logger.warning("pushing %d refs; checking %s only", len(updates), ref.local_ref)

    known = run_git(["cat-file", "-e", f"{ref.remote_sha}^{{commit}}"], repo_root=repo_root, check=False)
    if not ref.is_new_branch and known.returncode == 0:
        return DiffRange(kind="range", base=ref.remote_sha, head=ref.local_sha)

    base = EMPTY_TREE
    if base_branch:
        out = run_git(["merge-base", ref.local_sha, base_branch], repo_root=repo_root, check=False)
        if out.returncode == 0 and out.stdout.strip():
            base = out.stdout.strip()
    logger.debug("new branch %s; diffing from %s", ref.remote_ref, base)
    return DiffRange(kind="range", base=base, head=ref.local_sha)
