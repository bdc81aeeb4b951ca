"""Tests for grouping a ledger into phases."""

from __future__ import annotations

import pytest

from ledgerun.errors import (
    DependencyOrderViolation,
    DuplicateTaskId,
    LedgerValidationError,
    UnknownDependency,
)
from ledgerun.scheduler import Phase, build_phases, check_file_overlaps
from ledgerun.tasks.model import TaskStatus


class TestBuildPhases:
    def test_empty(self) -> None:
        assert build_phases([]) == []

    def test_groups_sorted_ascending(self, make_task) -> None:
        tasks = [
            make_task("c", group=3),
            make_task("a", group=1),
            make_task("b", group=2, depends_on=["a"]),
            make_task("a2", group=1),
        ]
        phases = build_phases(tasks)
        assert [p.number for p in phases] == [1, 2, 3]
        assert [p.task_ids() for p in phases] == [["a", "a2"], ["b"], ["c"]]

    def test_gaps_in_group_numbers(self, make_task) -> None:
        phases = build_phases([make_task("x", group=5), make_task("y", group=2)])
        assert [p.number for p in phases] == [2, 5]

    def test_duplicate_ids_rejected(self, make_task) -> None:
        tasks = [make_task("a", group=1), make_task("b", group=1), make_task("a", group=2)]
        with pytest.raises(DuplicateTaskId) as exc_info:
            build_phases(tasks)
        assert exc_info.value.task_id == "a"
        assert isinstance(exc_info.value, LedgerValidationError)

    def test_unknown_dependency(self, make_task) -> None:
        with pytest.raises(UnknownDependency) as exc_info:
            build_phases([make_task("a", depends_on=["ghost"])])
        assert exc_info.value.dependency == "ghost"

    def test_same_group_dependency(self, make_task) -> None:
        tasks = [make_task("a", group=1), make_task("b", group=1, depends_on=["a"])]
        with pytest.raises(DependencyOrderViolation):
            build_phases(tasks)

    def test_later_group_dependency(self, make_task) -> None:
        tasks = [make_task("a", group=2, depends_on=["b"]), make_task("b", group=3)]
        with pytest.raises(LedgerValidationError):
            build_phases(tasks)

    def test_every_dependency_in_earlier_phase(self, make_task) -> None:
        tasks = [
            make_task("a", group=1),
            make_task("b", group=2, depends_on=["a"]),
            make_task("c", group=4, depends_on=["a", "b"]),
        ]
        phase_of = {t.id: p.number for p in build_phases(tasks) for t in p.tasks}
        for t in tasks:
            for dep in t.depends_on:
                assert phase_of[dep] < phase_of[t.id]


class TestPhase:
    def test_all_completed_counts_skipped(self, make_task) -> None:
        phase = Phase(
            number=1,
            tasks=[make_task("a", status=TaskStatus.COMPLETED), make_task("b", status=TaskStatus.SKIPPED)],
        )
        assert phase.all_completed()
        assert phase.pending_count() == 0

    def test_pending_count(self, make_task) -> None:
        phase = Phase(
            number=1,
            tasks=[make_task("a", status=TaskStatus.COMPLETED), make_task("b"), make_task("c", status=TaskStatus.FAILED)],
        )
        assert not phase.all_completed()
        assert phase.pending_count() == 2
        assert phase.count(TaskStatus.FAILED) == 1


def test_file_overlaps(make_task) -> None:
    phase = Phase(
        number=1,
        tasks=[
            make_task("a", files=["shared.py", "a.py"]),
            make_task("b", files=["shared.py"]),
            make_task("c", files=["c.py"]),
        ],
    )
    assert check_file_overlaps(phase) == {"shared.py": ["a", "b"]}
