"""Phase builder: groups a ledger into sequential phases of parallel tasks."""

from __future__ import annotations

from dataclasses import dataclass, field

from ledgerun import log
from ledgerun.errors import DependencyOrderViolation, DuplicateTaskId, UnknownDependency
from ledgerun.tasks.model import Task, TaskStatus


@dataclass
class Phase:
    """All tasks sharing one ``parallel_group``. A view, never persisted.

    Usage::

        phases = build_phases(tasks)
        for phase in phases:
            if phase.all_completed():
                continue
            ...
    """

    number: int
    tasks: list[Task] = field(default_factory=list)

    def all_completed(self) -> bool:
        return all(t.is_done for t in self.tasks)

    def pending_count(self) -> int:
        return sum(1 for t in self.tasks if not t.is_done)

    def task_ids(self) -> list[str]:
        return [t.id for t in self.tasks]

    def count(self, status: TaskStatus) -> int:
        return sum(1 for t in self.tasks if t.status == status)


def build_phases(tasks: list[Task]) -> list[Phase]:
    """Group *tasks* by ``parallel_group`` in ascending order.

    Task IDs must be unique, else :class:`DuplicateTaskId`. Every dependency
    must name an existing task in a strictly smaller group; otherwise
    :class:`UnknownDependency` or :class:`DependencyOrderViolation` is raised.
    Within a phase tasks keep their ledger order.
    """
    if not tasks:
        return []

    by_id: dict[str, Task] = {}
    for task in tasks:
        if task.id in by_id:
            raise DuplicateTaskId(task.id)
        by_id[task.id] = task

    for task in tasks:
        for dep in task.depends_on:
            if not dep:
                continue
            dep_task = by_id.get(dep)
            if dep_task is None:
                raise UnknownDependency(task.id, dep)
            if dep_task.parallel_group >= task.parallel_group:
                raise DependencyOrderViolation(
                    task.id, task.parallel_group, dep, dep_task.parallel_group
                )

    groups: dict[int, list[Task]] = {}
    for task in tasks:
        groups.setdefault(task.parallel_group, []).append(task)

    phases = [Phase(number=g, tasks=groups[g]) for g in sorted(groups)]
    log.debug(f"Built {len(phases)} phase(s) from {len(tasks)} task(s)")
    return phases


def check_file_overlaps(phase: Phase) -> dict[str, list[str]]:
    """Return files claimed by more than one task in *phase*, mapped to task IDs."""
    owners: dict[str, list[str]] = {}
    for task in phase.tasks:
        for f in task.files:
            if f:
                owners.setdefault(f, []).append(task.id)
    return {f: ids for f, ids in owners.items() if len(ids) > 1}
