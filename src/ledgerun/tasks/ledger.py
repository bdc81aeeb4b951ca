"""Ledger parsing, serialization and in-place status updates.

A ledger is a markdown document made of task blocks::

    ## Task 1: Add the parser
    - **id**: task-001
    - **status**: pending
    - **parallel_group**: 1
    - **depends_on**: []
    - **description**: Parse the input format.
      Continuation lines are indented by two spaces.
    - **files**: ["src/parser.py"]
    - **retry_count**: 0

Anything before the first block header (title, frontmatter, notes) is ignored
by the parser and preserved by :func:`update_task_status`.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

from ledgerun import log
from ledgerun.errors import InvalidStatus, LedgerParseError, MalformedTask, TaskNotFound
from ledgerun.filelock import DEFAULT_LOCK_TIMEOUT, locked
from ledgerun.io_utils import atomic_write_text, read_text
from ledgerun.tasks.model import Task, TaskStatus

_HEADER_RE = re.compile(r"^##\s+Task\s+\d+:\s*(.*?)\s*$")
_FIELD_RE = re.compile(r"^(\s*)-\s+\*\*([a-z_]+)\*\*:\s?(.*)$")
_CONTINUATION_PREFIX = "  "


# ── List fields ──────────────────────────────────────────────────────


def parse_list_field(raw: str) -> list[str]:
    """Parse a bracketed list literal.

    A well-formed JSON array of strings is used as-is. Anything else goes
    through the forgiving path: brackets are stripped, the rest is split on
    commas and each item is unquoted.
    """
    raw = raw.strip()
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        value = None
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return [v.strip() for v in value if v.strip()]
    return _split_loose_list(raw)


def _split_loose_list(raw: str) -> list[str]:
    inner = raw.strip().strip("[]")
    items: list[str] = []
    for part in inner.split(","):
        item = part.strip().strip("\"'").strip()
        if item:
            items.append(item)
    return items


def format_list_field(values: list[str]) -> str:
    return json.dumps(list(values))


# ── Parsing ──────────────────────────────────────────────────────────


@dataclass
class _Block:
    """Line span of one task block inside a ledger."""

    title: str
    start: int
    end: int  # exclusive


def _split_blocks(lines: list[str]) -> list[_Block]:
    blocks: list[_Block] = []
    for i, line in enumerate(lines):
        m = _HEADER_RE.match(line)
        if not m:
            continue
        if blocks:
            blocks[-1].end = i
        blocks.append(_Block(title=m.group(1), start=i, end=len(lines)))
    return blocks


def _parse_int(raw: str, field: str, title: str) -> int:
    try:
        return int(raw.strip())
    except ValueError:
        raise LedgerParseError(
            f"invalid {field} {raw.strip()!r} for task {title!r}"
        ) from None


def _iter_body(
    lines: list[str], block: _Block
) -> Iterator[tuple[int, re.Match[str] | None, bool]]:
    """Yield ``(index, field match, is_description_text)`` for each body line.

    Lines indented under ``description``, and blank lines between them, are
    description text even when they look like a field.
    """
    in_description = False
    for i in range(block.start + 1, block.end):
        line = lines[i]
        if in_description and (line.startswith(_CONTINUATION_PREFIX) or not line.strip()):
            yield i, None, True
            continue
        m = _FIELD_RE.match(line)
        in_description = m is not None and m.group(2) == "description"
        yield i, m, False


def _parse_block(lines: list[str], block: _Block, index: int) -> Task:
    task = Task(id="", title=block.title)
    seen_status = False
    seen_group = False
    blank_run = 0

    for i, m, is_text in _iter_body(lines, block):
        line = lines[i]
        if is_text:
            if line.startswith(_CONTINUATION_PREFIX):
                task.description += "\n" * (blank_run + 1) + line[len(_CONTINUATION_PREFIX):]
                blank_run = 0
            else:
                blank_run += 1
            continue

        blank_run = 0
        if m is None:
            continue

        key, raw = m.group(2), m.group(3)
        value = raw.strip()
        match key:
            case "id":
                task.id = value
            case "status":
                if value:
                    try:
                        task.status = TaskStatus.parse(value)
                    except InvalidStatus as exc:
                        raise LedgerParseError(
                            f"invalid status {value!r} for task {block.title!r}"
                        ) from exc
                    seen_status = True
            case "parallel_group":
                task.parallel_group = _parse_int(value, key, block.title)
                if task.parallel_group < 1:
                    raise LedgerParseError(
                        f"parallel_group must be positive for task {block.title!r}, got {value}"
                    )
                seen_group = True
            case "depends_on":
                task.depends_on = parse_list_field(value)
            case "files":
                task.files = parse_list_field(value)
            case "description":
                task.description = raw
            case "retry_count":
                task.retry_count = _parse_int(value, key, block.title) if value else 0
            case _:
                log.debug(f"Ignoring unknown ledger field {key!r} in task {block.title!r}")

    if not task.id:
        raise LedgerParseError(f"task {index} ({block.title!r}) has no id")
    if not seen_group:
        raise LedgerParseError(f"task {task.id!r} has no parallel_group")
    if not seen_status:
        task.status = TaskStatus.PENDING
    return task


def parse_tasks(text: str) -> list[Task]:
    """Parse ledger text into task records, in document order.

    Raises :class:`LedgerParseError` for a block without an ``id`` or a
    ``parallel_group``, a duplicate ``id``, a status outside the enum, or a
    non-integer (or non-positive) group / retry count.
    """
    lines = [line.removesuffix("\r") for line in text.split("\n")]
    tasks: list[Task] = []
    seen: set[str] = set()
    for i, block in enumerate(_split_blocks(lines)):
        task = _parse_block(lines, block, i + 1)
        if task.id in seen:
            raise LedgerParseError(f"duplicate task id {task.id!r}")
        seen.add(task.id)
        tasks.append(task)
    return tasks


def load_tasks(path: Path) -> list[Task]:
    """Read and parse the ledger at *path* (no lock; readers tolerate staleness)."""
    return parse_tasks(read_text(path))


# ── Writing ──────────────────────────────────────────────────────────


def _format_description(description: str) -> str:
    first, *rest = description.split("\n") if description else [""]
    lines = [f"- **description**: {first}".rstrip()]
    lines += [f"{_CONTINUATION_PREFIX}{line}".rstrip() for line in rest]
    return "\n".join(lines)


def write_tasks(tasks: list[Task], heading: str = "# Tasks") -> str:
    """Serialize *tasks* to ledger text, preserving order."""
    parts: list[str] = [heading, ""]
    for n, task in enumerate(tasks, start=1):
        parts.append(f"## Task {n}: {task.title}".rstrip())
        parts.append(f"- **id**: {task.id}")
        parts.append(f"- **status**: {TaskStatus(task.status).value}")
        parts.append(f"- **parallel_group**: {task.parallel_group}")
        parts.append(f"- **depends_on**: {format_list_field(task.depends_on)}")
        parts.append(_format_description(task.description))
        parts.append(f"- **files**: {format_list_field(task.files)}")
        parts.append(f"- **retry_count**: {task.retry_count}")
        parts.append("")
    return "\n".join(parts)


# ── Status updates ───────────────────────────────────────────────────


def _block_id(lines: list[str], block: _Block) -> str:
    for _, m, _ in _iter_body(lines, block):
        if m and m.group(2) == "id":
            return m.group(3).strip()
    return ""


def _line_ending(line: str) -> str:
    return "\r" if line.endswith("\r") else ""


def _patch_block(
    lines: list[str],
    block: _Block,
    task_id: str,
    status: TaskStatus,
    retry_count: int | None,
) -> None:
    status_idx = -1
    retry_idx = -1
    indent = ""
    for i, m, _ in _iter_body(lines, block):
        if not m:
            continue
        if m.group(2) == "status" and status_idx < 0:
            status_idx, indent = i, m.group(1)
        elif m.group(2) == "retry_count" and retry_idx < 0:
            retry_idx = i

    if status_idx < 0:
        raise MalformedTask(task_id)

    eol = _line_ending(lines[status_idx])
    lines[status_idx] = f"{indent}- **status**: {status.value}{eol}"
    if retry_count is None:
        return
    retry_line = f"{indent}- **retry_count**: {retry_count}{eol}"
    if retry_idx >= 0:
        lines[retry_idx] = retry_line
    else:
        lines.insert(status_idx + 1, retry_line)


def set_status_in_text(
    text: str,
    task_id: str,
    status: TaskStatus | str,
    *,
    retry_count: int | None = None,
) -> str:
    """Return *text* with the status line of *task_id* replaced.

    Only the matching block changes; every other line, line ending included,
    is kept byte for byte.
    """
    new_status = TaskStatus.parse(status) if isinstance(status, str) else status
    lines = text.split("\n")

    for block in _split_blocks(lines):
        if _block_id(lines, block) == task_id:
            _patch_block(lines, block, task_id, new_status, retry_count)
            return "\n".join(lines)

    raise TaskNotFound(task_id)



def update_task_status(
    path: Path,
    task_id: str,
    status: TaskStatus | str,
    *,
    retry_count: int | None = None,
    lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
) -> None:
    """Set the status of *task_id* in the ledger at *path*.

    The read-patch-write cycle runs under the ledger's exclusive file lock.
    Raises :class:`InvalidStatus`, :class:`TaskNotFound`,
    :class:`MalformedTask` or :class:`LockTimeout`.
    """
    if isinstance(status, str):
        status = TaskStatus.parse(status)

    with locked(path, lock_timeout):
        text = read_text(path)
        atomic_write_text(path, set_status_in_text(text, task_id, status, retry_count=retry_count))
    log.debug(f"Task {task_id}: status -> {status.value}")


# ── Queries ──────────────────────────────────────────────────────────


def find_task(tasks: list[Task], task_id: str) -> Task | None:
    for t in tasks:
        if t.id == task_id:
            return t
    return None


def get_runnable_tasks(tasks: list[Task]) -> list[Task]:
    """Return pending tasks whose every dependency is completed."""
    status = {t.id: t.status for t in tasks}
    return [
        t
        for t in tasks
        if t.status == TaskStatus.PENDING
        and all(status.get(dep) == TaskStatus.COMPLETED for dep in t.depends_on)
    ]
