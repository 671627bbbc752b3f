"""Require lock files to change together with their dependency manifests.

A manifest only counts as changed when its dependency declarations differ from
the previous revision. Edits to unrelated sections (tool settings, scripts,
metadata) do not require a new lock file. Manifests that cannot be parsed
(``go.mod``, ``Gemfile``, malformed files) are compared as a whole.
"""

from __future__ import annotations

import json
import logging
import tomllib
from collections.abc import Callable, Mapping
from pathlib import PurePosixPath
from typing import Any

from gaterun.context import GateContext
from gaterun.errors import GateConfigError, ViolationError
from gaterun.gates.base import build_spec
from gaterun.types import FileSet, GateSpec, Severity

logger = logging.getLogger(__name__)

MANIFEST_LOCKS: dict[str, tuple[str, ...]] = {
    "package.json": ("package-lock.json", "npm-shrinkwrap.json", "yarn.lock", "pnpm-lock.yaml", "bun.lockb"),
    "pyproject.toml": ("uv.lock", "poetry.lock", "pdm.lock"),
    "Pipfile": ("Pipfile.lock",),
    "Cargo.toml": ("Cargo.lock",),
    "go.mod": ("go.sum",),
    "Gemfile": ("Gemfile.lock",),
    "composer.json": ("composer.lock",),
}

# Dotted key paths holding dependency declarations, per manifest name.
DEPENDENCY_KEYS: dict[str, tuple[str, ...]] = {
    "package.json": ("dependencies", "devDependencies", "peerDependencies", "optionalDependencies", "overrides"),
    "composer.json": ("require", "require-dev"),
    "pyproject.toml": (
        "project.dependencies",
        "project.optional-dependencies",
        "dependency-groups",
        "tool.poetry.dependencies",
        "tool.poetry.group",
        "tool.uv",
        "tool.pdm.dev-dependencies",
        "build-system.requires",
    ),
    "Pipfile": ("packages", "dev-packages", "requires"),
    "Cargo.toml": (
        "dependencies",
        "dev-dependencies",
        "build-dependencies",
        "target",
        "workspace.dependencies",
        "workspace.members",
        "package.version",
        "package.name",
    ),
}

_PARSERS: dict[str, Callable[[bytes], Any]] = {
    "package.json": json.loads,
    "composer.json": json.loads,
    "pyproject.toml": lambda data: tomllib.loads(data.decode("utf-8")),
    "Pipfile": lambda data: tomllib.loads(data.decode("utf-8")),
    "Cargo.toml": lambda data: tomllib.loads(data.decode("utf-8")),
}


def _dig(data: Any, dotted: str) -> Any:
    for key in dotted.split("."):
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def dependency_view(name: str, content: bytes) -> Any:
    """The dependency-relevant part of a manifest, or the raw bytes when it cannot be parsed."""
    parser = _PARSERS.get(name)
    keys = DEPENDENCY_KEYS.get(name)
    if parser is None or keys is None:
        return content
    try:
        data = parser(content)
    except (ValueError, UnicodeDecodeError) as exc:
        logger.debug("cannot parse %s (%s); comparing whole file", name, exc)
        return content
    return {key: _dig(data, key) for key in keys}


def dependencies_changed(path: str, ctx: GateContext) -> bool:
    previous = ctx.read_previous(path)
    if previous is None:
        return True
    name = PurePosixPath(path).name
    current = ctx.read_text(path)
    if current is None:
        return True
    return dependency_view(name, previous) != dependency_view(name, current.encode("utf-8"))


def _lock_candidates(manifest: str, lock_names: tuple[str, ...]) -> list[str]:
    """Lock paths for ``manifest``, nearest directory first (workspaces keep one lock at the root)."""
    parent = PurePosixPath(manifest).parent
    candidates = []
    for directory in (parent, *parent.parents):
        for lock in lock_names:
            candidates.append((directory / lock).as_posix())
    return candidates


def stale_manifests(files: FileSet, ctx: GateContext, table: Mapping[str, tuple[str, ...]]) -> list[tuple[str, str]]:
    """Return ``(manifest, lock)`` pairs whose dependencies changed but whose existing lock did not."""
    stale = []
    for path in files:
        lock_names = table.get(PurePosixPath(path).name)
        if not lock_names:
            continue
        existing = [c for c in _lock_candidates(path, lock_names) if (ctx.repo_root / c).is_file()]
        if not existing:
            continue
        if any(lock in files for lock in existing):
            continue
        if not dependencies_changed(path, ctx):
            logger.debug("%s changed outside its dependency sections", path)
            continue
        stale.append((path, existing[0]))
    return stale


def build_lockfile_gate(name: str, options: Mapping[str, Any]) -> GateSpec:
    table = dict(MANIFEST_LOCKS)
    extra = options.get("manifests", {})
    if not isinstance(extra, Mapping):
        raise GateConfigError(f"gate {name!r}: 'manifests' must map manifest names to lock file names")
    for manifest, locks in extra.items():
        table[str(manifest)] = (locks,) if isinstance(locks, str) else tuple(str(lock) for lock in locks)

    lock_names = {lock for locks in table.values() for lock in locks}

    def applies(files: FileSet, ctx: GateContext) -> bool:
        return any(PurePosixPath(path).name in table for path in files)

    def check(files: FileSet, ctx: GateContext) -> str | None:
        stale = stale_manifests(files, ctx, table)
        if stale:
            lines = [f"  {manifest} changed but {lock} is not part of the change" for manifest, lock in stale]
            raise ViolationError(
                "dependency manifest changed without its lock file:\n"
                + "\n".join(lines)
                + "\nRegenerate the lock file and stage it.",
                files=[manifest for manifest, _ in stale],
            )
        return None

    return build_spec(
        name,
        options,
        check,
        kind="lockfile",
        severity=Severity.HARD,
        parallel=True,
        # lock files must reach the check so a manifest staged with its lock passes
        patterns=(*table, *sorted(lock_names)),
        applies=applies,
        description="manifests must ship with their lock files",
    )
