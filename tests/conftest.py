from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

import pytest

from git_audit.models import RefSnapshot

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")

COMMIT_A = "a" * 40
COMMIT_B = "b" * 40
COMMIT_C = "c" * 40


def mk_snapshot(
    *,
    branch: str | None = "main",
    local_commit: str | None = COMMIT_A,
    upstream_commit: str | None = COMMIT_A,
    merge_base: str | None = COMMIT_A,
    has_uncommitted_changes: bool = False,
    has_staged_changes: bool = False,
    upstream_ref: str | None = "origin/main",
    last_log_line: str = "aaaaaaa initial commit",
    fetch_error: str | None = None,
) -> RefSnapshot:
    return RefSnapshot(
        branch=branch,
        local_commit=local_commit,
        upstream_commit=upstream_commit,
        merge_base=merge_base,
        has_uncommitted_changes=has_uncommitted_changes,
        has_staged_changes=has_staged_changes,
        last_log_line=last_log_line,
        upstream_ref=upstream_ref,
        fetch_error=fetch_error,
    )


def mk_repo_dir(path: Path) -> Path:
    """Create a directory that looks like a working copy to discovery."""
    (path / ".git").mkdir(parents=True)
    return path


def git(cwd: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", *args], cwd=cwd, capture_output=True, text=True, check=True
    )
    return result.stdout.strip()


def commit_file(repo: Path, name: str, content: str, message: str | None = None) -> str:
    target = repo / name
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content)
    git(repo, "add", name)
    git(repo, "commit", "-q", "-m", message or f"update {name}")
    return git(repo, "rev-parse", "HEAD")


def init_repo(path: Path, *, with_commit: bool = True) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    git(path, "init", "-q")
    git(path, "symbolic-ref", "HEAD", "refs/heads/main")
    if with_commit:
        commit_file(path, "README.md", "hello\n", "initial commit")
    return path


@dataclass
class TrackedRepo:
    origin: Path  # bare remote
    upstream: Path  # second clone, used to push commits to origin
    work: Path  # clone under audit, tracking origin/main


@pytest.fixture(autouse=True)
def isolated_git_env(monkeypatch, tmp_path_factory):
    home = tmp_path_factory.mktemp("home")
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.delenv("XDG_CONFIG_HOME", raising=False)
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Audit Test")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "audit@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Audit Test")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "audit@example.com")
    for name in (
        "GIT_DIR",
        "GIT_WORK_TREE",
        "GIT_INDEX_FILE",
        "GIT_AUDIT_DEPTH",
        "GIT_AUDIT_FETCH",
        "GIT_AUDIT_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def tracked(tmp_path: Path) -> TrackedRepo:
    origin = tmp_path / "origin.git"
    git(tmp_path, "init", "-q", "--bare", str(origin))
    git(origin, "symbolic-ref", "HEAD", "refs/heads/main")

    upstream = init_repo(tmp_path / "upstream")
    git(upstream, "remote", "add", "origin", str(origin))
    git(upstream, "push", "-q", "-u", "origin", "main")

    work = tmp_path / "work"
    git(tmp_path, "clone", "-q", str(origin), str(work))
    return TrackedRepo(origin=origin, upstream=upstream, work=work)
