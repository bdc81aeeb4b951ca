"""Run history: numbered session transcripts and per-phase log collection."""

from __future__ import annotations

import re
import threading
from pathlib import Path

from ledgerun.client import Message
from ledgerun.io_utils import read_optional, write_text

_RUN_RE = re.compile(r"^run-(\d+)(?:-[A-Za-z0-9_.-]+)?\.md$")

# Number allocation and file creation happen together so parallel tasks in one
# process never reuse a run number.
_alloc_lock = threading.Lock()


def _run_number(name: str) -> int | None:
    m = _RUN_RE.match(name)
    return int(m.group(1)) if m else None


def next_history_number(history_dir: Path) -> int:
    """Return one past the highest ``run-NNN`` file number (1 for an empty dir)."""
    if not history_dir.is_dir():
        return 1
    highest = 0
    for p in history_dir.iterdir():
        n = _run_number(p.name)
        if n is not None and p.is_file():
            highest = max(highest, n)
    return highest + 1


def render_transcript(num: int, messages: list[Message]) -> str:
    parts = [f"# Run {num:03d}", ""]
    for msg in messages:
        parts.append(f"## {msg.role}")
        parts.append("")
        parts.append(msg.text.rstrip())
        parts.append("")
        parts.append("---")
        parts.append("")
    return "\n".join(parts)


def save_history(history_dir: Path, task_id: str, messages: list[Message]) -> Path:
    """Write the transcript to ``run-NNN-<task_id>.md`` and return its path."""
    with _alloc_lock:
        num = next_history_number(history_dir)
        path = history_dir / f"run-{num:03d}-{task_id}.md"
        write_text(path, render_transcript(num, messages))
    return path


def collect_phase_logs(history_dir: Path, baseline: int) -> str:
    """Concatenate run transcripts numbered above *baseline*, oldest first."""
    if not history_dir.is_dir():
        return ""
    runs: list[tuple[int, Path]] = []
    for p in history_dir.iterdir():
        n = _run_number(p.name)
        if n is not None and n > baseline and p.is_file():
            runs.append((n, p))
    return "".join(
        f"### {p.name}\n\n{read_optional(p)}\n\n" for _, p in sorted(runs)
    )
