from __future__ import annotations

import shutil
import subprocess
from collections.abc import Callable
from pathlib import Path

import pytest

GIT_AVAILABLE = shutil.which("git") is not None


GitFn = Callable[..., str]


@pytest.fixture(autouse=True)
def _isolated_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    for key in (
        "GBM_REPO_PATH",
        "GBM_TARGET_BRANCH",
        "GBM_REMOTE",
        "GBM_GIT_TIMEOUT_SECONDS",
        "GBM_METADATA_CACHE_TTL_SECONDS",
        "GBM_PRUNE_CHECK_INTERVAL_SECONDS",
        "GBM_SYNC_REFLOG",
        "GBM_LOG_LEVEL",
    ):
        monkeypatch.delenv(key, raising=False)

    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_AUTHOR_NAME", "GBM Test")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "gbm@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "GBM Test")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "gbm@example.com")


@pytest.fixture()
def git() -> GitFn:
    """Run git in a directory and return stdout; failures raise."""

    def _git(repo: Path, *args: str) -> str:
        completed = subprocess.run(
            ["git", "-c", "commit.gpgsign=false", *args],
            cwd=repo,
            capture_output=True,
            text=True,
            check=True,
        )
        return completed.stdout

    return _git


@pytest.fixture()
def commit_file(git: GitFn) -> Callable[..., str]:
    """Write a file, commit it and return the new HEAD hash."""

    def _commit(repo: Path, name: str, content: str, message: str) -> str:
        path = repo / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        git(repo, "add", name)
        git(repo, "commit", "-q", "-m", message)
        return git(repo, "rev-parse", "HEAD").strip()

    return _commit


@pytest.fixture()
def git_repo(tmp_path: Path, git: GitFn, commit_file) -> Path:
    """A repository on ``main`` with one commit."""
    if not GIT_AVAILABLE:
        pytest.skip("git binary not available")
    repo = tmp_path / "repo"
    repo.mkdir()
    git(repo, "init", "-q")
    git(repo, "symbolic-ref", "HEAD", "refs/heads/main")
    commit_file(repo, "README.md", "hello\n", "initial commit")
    return repo
