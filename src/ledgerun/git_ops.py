"""Git operations used for phase checkpoints and review diffs."""

from __future__ import annotations

import subprocess
from pathlib import Path

from ledgerun import log


class GitError(RuntimeError):
    """A git command that must succeed did not."""


def _git(*args: str, cwd: Path | None = None, check: bool = False) -> subprocess.CompletedProcess[str]:
    """Run a git command, suppressing stderr noise."""
    return subprocess.run(
        ["git", *args],
        capture_output=True,
        text=True,
        encoding="utf-8",
        errors="replace",
        cwd=cwd,
        check=check,
    )


def is_repo(cwd: Path | None = None) -> bool:
    r = _git("rev-parse", "--is-inside-work-tree", cwd=cwd)
    return r.returncode == 0 and r.stdout.strip() == "true"


def has_changes(cwd: Path | None = None) -> bool:
    """Return ``True`` when the worktree has staged, unstaged or untracked changes."""
    r = _git("status", "--porcelain", cwd=cwd)
    return bool(r.stdout.strip())


def current_head(cwd: Path | None = None) -> str:
    """Return the HEAD commit hash, or ``""`` in a repository without commits."""
    r = _git("rev-parse", "HEAD", cwd=cwd)
    return r.stdout.strip() if r.returncode == 0 else ""


def commit_all(message: str, cwd: Path | None = None) -> str:
    """Stage everything and commit. Returns the new HEAD hash.

    Raises :class:`GitError` when staging or committing fails.
    """
    r = _git("add", "-A", cwd=cwd)
    if r.returncode != 0:
        raise GitError(f"git add failed: {r.stderr.strip()}")
    r = _git("commit", "-m", message, cwd=cwd)
    if r.returncode != 0:
        detail = (r.stderr or r.stdout).strip()
        raise GitError(f"git commit failed: {detail}")
    head = current_head(cwd=cwd)
    log.debug(f"Committed {head[:8]}: {message}")
    return head


def diff_head(cwd: Path | None = None) -> str:
    """Return the working-tree diff against HEAD (against the index without commits)."""
    if current_head(cwd=cwd):
        r = _git("diff", "HEAD", cwd=cwd)
    else:
        r = _git("diff", cwd=cwd)
    return r.stdout if r.returncode == 0 else ""


def diff_stat(base: str, head: str = "HEAD", cwd: Path | None = None) -> str:
    r = _git("diff", "--stat", f"{base}..{head}", cwd=cwd)
    return r.stdout.strip() if r.returncode == 0 else ""


def dirty_worktree_entries(cwd: Path | None = None) -> list[str]:
    """Return concise dirty entries from `git status --porcelain`."""
    r = _git("status", "--porcelain", cwd=cwd)
    if r.returncode != 0 or not r.stdout.strip():
        return []
    return [line.strip() for line in r.stdout.splitlines() if line.strip()]


def ensure_clean_git_state(cwd: Path | None = None) -> None:
    """Warn about uncommitted changes; they will be folded into the next checkpoint."""
    entries = dirty_worktree_entries(cwd=cwd)
    if not entries:
        return
    shown = ", ".join(entries[:5])
    more = f" (+{len(entries) - 5} more)" if len(entries) > 5 else ""
    log.warn(f"Working tree has uncommitted changes: {shown}{more}")
