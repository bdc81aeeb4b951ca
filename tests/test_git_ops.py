"""Tests for git helpers used by phase checkpoints."""

from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

from ledgerun.git_ops import (
    GitError,
    commit_all,
    current_head,
    diff_head,
    diff_stat,
    dirty_worktree_entries,
    has_changes,
    is_repo,
)
from ledgerun.io_utils import write_text


def test_is_repo(git_repo: Path, tmp_path_factory: pytest.TempPathFactory) -> None:
    assert is_repo(cwd=git_repo)
    assert not is_repo(cwd=tmp_path_factory.mktemp("plain"))


def test_has_changes_sees_untracked(git_repo: Path) -> None:
    assert not has_changes(cwd=git_repo)
    write_text(git_repo / "new.txt", "x")
    assert has_changes(cwd=git_repo)
    assert dirty_worktree_entries(cwd=git_repo) == ["?? new.txt"]


def test_commit_all_stages_everything(git_repo: Path) -> None:
    before = current_head(cwd=git_repo)
    write_text(git_repo / "new.txt", "x")
    write_text(git_repo / "README.md", "# Changed")

    head = commit_all("ledgerun: phase 1 - Add new", cwd=git_repo)

    assert head and head != before
    assert not has_changes(cwd=git_repo)
    subject = subprocess.run(
        ["git", "log", "-1", "--format=%s"], cwd=git_repo, capture_output=True, text=True
    ).stdout.strip()
    assert subject == "ledgerun: phase 1 - Add new"


def test_commit_all_with_nothing_to_commit(git_repo: Path) -> None:
    with pytest.raises(GitError, match="commit failed"):
        commit_all("empty", cwd=git_repo)


def test_diff_head_tracks_modifications(git_repo: Path) -> None:
    assert diff_head(cwd=git_repo) == ""
    write_text(git_repo / "README.md", "# Test\nmore\n")
    assert "+more" in diff_head(cwd=git_repo)


def test_diff_head_without_commits(tmp_path: Path) -> None:
    subprocess.run(["git", "init"], cwd=tmp_path, capture_output=True, check=True)
    assert current_head(cwd=tmp_path) == ""
    assert diff_head(cwd=tmp_path) == ""


def test_diff_stat_between_commits(git_repo: Path) -> None:
    base = current_head(cwd=git_repo)
    write_text(git_repo / "new.txt", "one\ntwo\n")
    head = commit_all("add new", cwd=git_repo)
    stat = diff_stat(base, head, cwd=git_repo)
    assert "new.txt" in stat
    assert "1 file changed" in stat
