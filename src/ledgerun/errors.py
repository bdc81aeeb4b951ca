"""Exception taxonomy for ledger loading, scheduling and task execution.

Fatal errors (parse, validation, missing prerequisites) abort a run before any
task is dispatched. :class:`AttemptFailure` subclasses are absorbed by the
retry loop. Gate failures are never raised past the driver.
"""

from __future__ import annotations


class LedgerunError(Exception):
    """Base exception for ledgerun errors."""


# ── Ledger ────────────────────────────────────────────────────────────


class LedgerParseError(LedgerunError):
    """The ledger text is structurally invalid."""


class InvalidStatus(LedgerunError):
    """A status value outside the closed task status enum."""

    def __init__(self, status: str) -> None:
        super().__init__(f"invalid status {status!r}")
        self.status = status


class TaskNotFound(LedgerunError):
    """No task with the requested ID exists in the ledger."""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"task {task_id!r} not found")
        self.task_id = task_id


class MalformedTask(LedgerunError):
    """A task block exists but lacks a field that must be rewritten."""

    def __init__(self, task_id: str, field: str = "status") -> None:
        super().__init__(f"task {task_id!r} found but has no {field} field")
        self.task_id = task_id
        self.field = field


class LockTimeout(LedgerunError):
    """The ledger lock could not be acquired in time."""

    def __init__(self, lock_path: str, timeout: float) -> None:
        super().__init__(f"timed out acquiring lock on {lock_path} after {timeout:g}s")
        self.lock_path = lock_path
        self.timeout = timeout


# ── Phase building ────────────────────────────────────────────────────


class LedgerValidationError(LedgerunError):
    """The task graph is inconsistent."""


class DuplicateTaskId(LedgerValidationError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"duplicate task id {task_id!r}")
        self.task_id = task_id


class UnknownDependency(LedgerValidationError):
    def __init__(self, task_id: str, dependency: str) -> None:
        super().__init__(f"task {task_id!r} depends on unknown task {dependency!r}")
        self.task_id = task_id
        self.dependency = dependency


class DependencyOrderViolation(LedgerValidationError):
    def __init__(self, task_id: str, group: int, dependency: str, dep_group: int) -> None:
        super().__init__(
            f"task {task_id!r} (group {group}) depends on task {dependency!r} "
            f"(group {dep_group}); dependencies must be in earlier groups"
        )
        self.task_id = task_id
        self.group = group
        self.dependency = dependency
        self.dep_group = dep_group


# ── Task resolution / workspace ───────────────────────────────────────


class NoRunnableTasks(LedgerunError):
    def __init__(self) -> None:
        super().__init__("no runnable tasks")


class AmbiguousTask(LedgerunError):
    def __init__(self, candidates: list[str]) -> None:
        super().__init__(
            f"multiple runnable tasks: {', '.join(candidates)}; specify one with --id"
        )
        self.candidates = candidates


class PlanNotFound(LedgerunError):
    """The plan slug does not resolve to exactly one plan directory."""


class MissingPrerequisite(LedgerunError):
    """A plan artifact required by a command is missing."""


# ── Attempts ──────────────────────────────────────────────────────────


class AttemptFailure(LedgerunError):
    """A single task attempt failed; the retry loop may try again."""


class EngineError(AttemptFailure):
    """The collaborator reported an error."""


class TaskTimeout(AttemptFailure):
    """The attempt exceeded its time budget."""


class Cancelled(AttemptFailure):
    """The run was cancelled; no further attempts are made."""
