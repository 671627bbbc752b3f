"""Pytest configuration and fixtures for gaterun tests."""
from __future__ import annotations

import subprocess
from collections.abc import Callable
from pathlib import Path

import pytest


def git(repo: Path, *args: str) -> str:
    completed = subprocess.run(
        ["git", *args],
        cwd=repo,
        check=True,
        capture_output=True,
        text=True,
    )
    return completed.stdout


def _init(repo: Path) -> None:
    repo.mkdir(parents=True, exist_ok=True)
    git(repo, "init", "-q")
    git(repo, "checkout", "-q", "-b", "main")
    git(repo, "config", "user.email", "test@example.com")
    git(repo, "config", "user.name", "Test User")
    git(repo, "config", "commit.gpgsign", "false")


@pytest.fixture
def empty_repo(tmp_path: Path) -> Path:
    """A git repository without any commits."""
    repo = tmp_path / "empty_repo"
    _init(repo)
    return repo


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    """Create a temporary git repository with one commit."""
    repo = tmp_path / "test_repo"
    _init(repo)
    (repo / "README.md").write_text("# Test Repo\n")
    git(repo, "add", "README.md")
    git(repo, "commit", "-q", "-m", "Initial commit")
    return repo


@pytest.fixture
def stage(git_repo: Path) -> Callable[[dict[str, str]], None]:
    """Write files into ``git_repo`` and add them to the index."""

    def _stage(files: dict[str, str]) -> None:
        for rel, content in files.items():
            path = git_repo / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)
        git(git_repo, "add", "--", *files)

    return _stage


@pytest.fixture
def commit(git_repo: Path) -> Callable[..., str]:
    """Commit the index and return the new HEAD sha."""

    def _commit(message: str = "change") -> str:
        git(git_repo, "commit", "-q", "-m", message)
        return git(git_repo, "rev-parse", "HEAD").strip()

    return _commit


@pytest.fixture
def gitcmd() -> Callable[..., str]:
    """``gitcmd(repo, *args)`` runs git and returns stdout."""
    return git
