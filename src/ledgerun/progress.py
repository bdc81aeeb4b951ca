"""Console rendering of phase headers, per-task results and overall progress."""

from __future__ import annotations

from dataclasses import dataclass

from rich.markup import escape

from ledgerun import log
from ledgerun.executor import TaskResult
from ledgerun.scheduler import Phase
from ledgerun.tasks.model import Task, TaskStatus

STATUS_ICONS = {
    TaskStatus.PENDING: "[dim]o[/dim]",
    TaskStatus.RUNNING: "[cyan]~[/cyan]",
    TaskStatus.COMPLETED: "[green]✓[/green]",
    TaskStatus.FAILED: "[red]✗[/red]",
    TaskStatus.SKIPPED: "[yellow]-[/yellow]",
}


@dataclass
class Progress:
    completed: int
    pending: int
    failed: int
    total: int

    @property
    def percent(self) -> int:
        return self.completed * 100 // self.total if self.total else 0

    @classmethod
    def from_tasks(cls, tasks: list[Task]) -> Progress:
        return cls(
            completed=sum(1 for t in tasks if t.status == TaskStatus.COMPLETED),
            pending=sum(1 for t in tasks if t.status == TaskStatus.PENDING),
            failed=sum(1 for t in tasks if t.status == TaskStatus.FAILED),
            total=len(tasks),
        )


def format_progress(phase_index: int, phase_count: int, tasks: list[Task]) -> str:
    p = Progress.from_tasks(tasks)
    return (
        f"Progress: phase {phase_index}/{phase_count} | "
        f"{p.completed}/{p.total} tasks complete ({p.percent}%) | "
        f"{p.pending} pending, {p.failed} failed"
    )


def print_phase_header(phase: Phase) -> None:
    log.emit("")
    log.emit(
        f"[bold blue]>>> Phase {phase.number}[/bold blue] - "
        f"{len(phase.tasks)} task(s), {phase.pending_count()} pending"
    )


def print_phase_results(results: list[TaskResult]) -> None:
    for r in sorted(results, key=lambda r: r.task_id):
        if r.ok:
            extra = f" (succeeded after {r.retries} retries)" if r.retries else ""
            log.emit(f"  [green]✓[/green] {r.task_id} - {escape(r.title)}{extra}")
        else:
            log.emit(
                f"  [red]✗[/red] {r.task_id} - {escape(r.title)} "
                f"(retries: {r.retries}, error: {escape(str(r.error))})"
            )


def print_overall_progress(phase_index: int, phase_count: int, tasks: list[Task]) -> None:
    log.emit("")
    log.emit(f"[bold cyan]{format_progress(phase_index, phase_count, tasks)}[/bold cyan]")


def print_task_table(tasks: list[Task], runnable: list[Task]) -> None:
    """Status listing used by ``ledgerun status``."""
    runnable_ids = {t.id for t in runnable}
    for t in tasks:
        marker = " [bold green]<- next[/bold green]" if t.id in runnable_ids else ""
        log.emit(
            f"  {STATUS_ICONS[t.status]} [bold]{t.id}[/bold] "
            f"[dim](group {t.parallel_group})[/dim] {escape(t.title)}{marker}"
        )
