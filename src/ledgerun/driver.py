"""Execution driver: crash recovery, phase iteration and post-phase gates."""

from __future__ import annotations

from dataclasses import dataclass, field

from ledgerun import gates, git_ops, log
from ledgerun.client import LLMClient
from ledgerun.config import Config
from ledgerun.context import RunContext
from ledgerun.errors import LedgerParseError
from ledgerun.executor import LedgerAttempt, TaskAttempt, TaskResult, results_all_failed, run_phase
from ledgerun.history import next_history_number
from ledgerun.progress import print_overall_progress, print_phase_header, print_phase_results
from ledgerun.scheduler import build_phases, check_file_overlaps
from ledgerun.tasks.ledger import load_tasks, update_task_status
from ledgerun.tasks.model import Task, TaskStatus
from ledgerun.workspace import Workspace


@dataclass
class ExecutionReport:
    """What a call to :func:`execute` did."""

    recovered: list[str] = field(default_factory=list)
    results: dict[int, list[TaskResult]] = field(default_factory=dict)
    committed_phases: list[int] = field(default_factory=list)
    docs_committed: bool = False
    cancelled: bool = False
    tasks: list[Task] = field(default_factory=list)

    @property
    def failed_tasks(self) -> list[str]:
        return [r.task_id for rs in self.results.values() for r in rs if not r.ok]


def recover_crashed_tasks(ws: Workspace, tasks: list[Task], lock_timeout: float = 5.0) -> list[str]:
    """Reset every ``running`` task to ``pending``; returns the reset IDs.

    A task can only be ``running`` at startup if a previous run died mid-task.
    """
    recovered: list[str] = []
    for t in tasks:
        if t.status == TaskStatus.RUNNING:
            log.warn(f"Crash recovery: resetting {t.id} to pending")
            update_task_status(ws.tasks_path, t.id, TaskStatus.PENDING, lock_timeout=lock_timeout)
            recovered.append(t.id)
    return recovered


def _reload(ws: Workspace, fallback: list[Task]) -> list[Task]:
    try:
        return load_tasks(ws.tasks_path)
    except LedgerParseError as exc:
        log.error(f"Failed to re-read ledger: {exc}")
        return fallback


def execute(
    ctx: RunContext,
    client: LLMClient,
    cfg: Config,
    ws: Workspace,
    *,
    attempt: TaskAttempt | None = None,
) -> ExecutionReport:
    """Run every unfinished phase of the plan in *ws*.

    Setup problems (missing artifacts, unreadable or inconsistent ledger)
    raise before any task is dispatched. Task failures do not raise: they are
    reported per phase and in the returned :class:`ExecutionReport`.
    """
    ws.check_prerequisites()
    ws.ignore_lock_files()
    report = ExecutionReport()

    tasks = load_tasks(ws.tasks_path)
    if not tasks:
        log.info("No tasks to execute")
        return report

    report.recovered = recover_crashed_tasks(ws, tasks, cfg.lock_timeout)
    if report.recovered:
        tasks = load_tasks(ws.tasks_path)

    phases = build_phases(tasks)
    git_ops.ensure_clean_git_state(cwd=ws.repo_dir)
    attempt = attempt or LedgerAttempt(client, cfg, ws)

    for index, phase in enumerate(phases, start=1):
        if ctx.cancelled:
            break
        if phase.all_completed():
            log.info(f"Skipping completed phase {phase.number}")
            continue

        print_phase_header(phase)
        for path, owners in check_file_overlaps(phase).items():
            log.warn(f"Phase {phase.number}: {path} is listed by {', '.join(owners)}")

        history_baseline = next_history_number(ws.history_dir) - 1
        results = run_phase(ctx, phase, cfg.max_parallel, cfg.max_retries, attempt)
        report.results[phase.number] = results
        tasks = _reload(ws, tasks)
        print_phase_results(results)

        if results_all_failed(results):
            log.warn(f"All tasks in phase {phase.number} failed, skipping gates and commit")
            continue

        gates.review_phase(ctx, client, cfg, ws, phase)
        gates.validate_external_assumptions(ctx, client, cfg, ws, phase)
        gates.harden_domain(ctx, client, cfg, ws, phase)

        if gates.commit_phase(ws, phase):
            report.committed_phases.append(phase.number)
            gates.generate_phase_summary(ctx, client, cfg, ws, phase)

        gates.harvest_questions(ctx, client, cfg, ws, phase, history_baseline)
        print_overall_progress(index, len(phases), tasks)

    report.cancelled = ctx.cancelled
    if report.committed_phases and not report.cancelled:
        report.docs_committed = gates.align_documentation(ctx, client, cfg, ws)

    report.tasks = _reload(ws, tasks)
    if report.cancelled:
        log.warn("Execution cancelled")
    else:
        log.success("Execution complete")
    return report
