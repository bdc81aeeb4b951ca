"""Open-questions ledger: uncertainties harvested from task transcripts."""

from __future__ import annotations

import re
from pathlib import Path

from ledgerun import log
from ledgerun.errors import LedgerParseError
from ledgerun.filelock import DEFAULT_LOCK_TIMEOUT, locked
from ledgerun.io_utils import atomic_write_text, read_optional
from ledgerun.tasks.model import Question, QuestionStatus

_HEADER_RE = re.compile(r"^##\s+(Q\d+):\s*(.*?)\s*$")
_FIELD_RE = re.compile(r"^\s*-\s+\*\*([a-z_]+)\*\*:\s?(.*)$")
_ID_NUM_RE = re.compile(r"^Q(\d+)$")

QUESTIONS_SEPARATOR = "===QUESTIONS==="


def parse_questions(text: str) -> list[Question]:
    """Parse question blocks; a missing status means unanswered.

    Raises :class:`LedgerParseError` for a status outside the enum.
    """
    questions: list[Question] = []
    current: Question | None = None

    for line in text.splitlines():
        m = _HEADER_RE.match(line)
        if m:
            current = Question(id=m.group(1), title=m.group(2))
            questions.append(current)
            continue
        if current is None:
            continue
        fm = _FIELD_RE.match(line)
        if not fm:
            continue
        key, value = fm.group(1), fm.group(2).strip()
        match key:
            case "source":
                current.source = value
            case "status":
                if value:
                    try:
                        current.status = QuestionStatus(value)
                    except ValueError:
                        raise LedgerParseError(
                            f"invalid status {value!r} for question {current.id}"
                        ) from None
            case "question":
                current.question = value
            case "answer":
                current.answer = value
            case "validated_by":
                current.validated_by = [v.strip() for v in value.split(",") if v.strip()]

    return questions


def _headers(text: str) -> list[Question]:
    """Question headers only; fields are not validated."""
    found: list[Question] = []
    for line in text.splitlines():
        m = _HEADER_RE.match(line)
        if m:
            found.append(Question(id=m.group(1), title=m.group(2)))
    return found


def _render_blocks(questions: list[Question]) -> list[str]:
    parts: list[str] = []
    for q in questions:
        parts.append(f"## {q.id}: {q.title or 'Question'}")
        parts.append(f"- **source**: {q.source}".rstrip())
        parts.append(f"- **status**: {QuestionStatus(q.status).value}".rstrip())
        parts.append(f"- **question**: {q.question}".rstrip())
        parts.append(f"- **answer**: {q.answer}".rstrip())
        parts.append(f"- **validated_by**: {', '.join(q.validated_by)}".rstrip())
        parts.append("")
    return parts


def write_questions(questions: list[Question]) -> str:
    return "\n".join(["# Questions", "", *_render_blocks(questions)])


def load_questions(path: Path) -> list[Question]:
    return parse_questions(read_optional(path))


def max_question_number(questions: list[Question]) -> int:
    highest = 0
    for q in questions:
        m = _ID_NUM_RE.match(q.id)
        if m:
            highest = max(highest, int(m.group(1)))
    return highest


def split_questions(output: str) -> tuple[str, str]:
    """Split model output on the questions separator into ``(artifact, questions)``."""
    if QUESTIONS_SEPARATOR not in output:
        return output, ""
    artifact, questions = output.split(QUESTIONS_SEPARATOR, 1)
    return artifact.strip(), questions.strip()


def append_questions(
    path: Path,
    raw: str,
    *,
    source: str = "",
    note: str = "",
    lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
) -> int:
    """Merge question blocks from *raw* into the ledger at *path*.

    Incoming questions are renumbered after the highest existing ID. If *raw*
    contains no parseable question blocks it is appended verbatim (prefixed by
    an HTML comment *note*) so nothing reported by the model is lost. Returns
    the number of structured questions added.
    """
    raw = raw.strip()
    if not raw:
        return 0

    with locked(path, lock_timeout):
        existing_text = read_optional(path)
        try:
            incoming = parse_questions(raw)
        except LedgerParseError as exc:
            log.debug(f"Harvested questions did not parse ({exc}); appending raw text")
            incoming = []

        if not incoming:
            log.debug("Harvested questions are unstructured; appending raw text")
            block = f"<!-- {note} -->\n{raw}" if note else raw
            combined = f"{existing_text.rstrip()}\n\n{block}\n" if existing_text.strip() else f"{block}\n"
            atomic_write_text(path, combined)
            return 0

        next_num = max_question_number(_headers(existing_text)) + 1
        for q in incoming:
            q.id = f"Q{next_num}"
            next_num += 1
            if source and not q.source:
                q.source = source

        if existing_text.strip():
            blocks = "\n".join(_render_blocks(incoming))
            atomic_write_text(path, f"{existing_text.rstrip()}\n\n{blocks}")
        else:
            atomic_write_text(path, write_questions(incoming))
        return len(incoming)


def unanswered(questions: list[Question]) -> list[Question]:
    return [q for q in questions if q.status == QuestionStatus.UNANSWERED]
