"""Task and Question data models used across ledger loading and execution."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from ledgerun.errors import InvalidStatus


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"

    @classmethod
    def parse(cls, raw: str) -> "TaskStatus":
        """Return the status for *raw*, raising :class:`InvalidStatus` otherwise."""
        try:
            return cls(raw.strip())
        except ValueError:
            raise InvalidStatus(raw.strip()) from None


# Terminal states that never need dispatching again.
DONE_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.SKIPPED})


@dataclass
class Task:
    id: str
    title: str = ""
    status: TaskStatus = TaskStatus.PENDING
    parallel_group: int = 0
    depends_on: list[str] = field(default_factory=list)
    description: str = ""
    files: list[str] = field(default_factory=list)
    retry_count: int = 0

    @property
    def is_done(self) -> bool:
        return self.status in DONE_STATUSES


class QuestionStatus(str, Enum):
    UNANSWERED = "unanswered"
    AUTO_ANSWERED = "auto-answered"
    ANSWERED = "answered"


@dataclass
class Question:
    id: str
    title: str = ""
    source: str = ""
    status: QuestionStatus = QuestionStatus.UNANSWERED
    question: str = ""
    answer: str = ""
    validated_by: list[str] = field(default_factory=list)
