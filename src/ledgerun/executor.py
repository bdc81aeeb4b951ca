"""Phase executor: bounded-parallel task dispatch with per-task retry."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Protocol

from ledgerun import log
from ledgerun.client import LLMClient
from ledgerun.config import Config
from ledgerun.context import RunContext
from ledgerun.errors import Cancelled, LedgerunError
from ledgerun.runner import run_task
from ledgerun.scheduler import Phase
from ledgerun.tasks.ledger import update_task_status
from ledgerun.tasks.model import Task, TaskStatus
from ledgerun.workspace import Workspace


@dataclass
class TaskResult:
    """Outcome of all attempts at one task."""

    task_id: str
    title: str
    error: BaseException | None = None
    retries: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None


class TaskAttempt(Protocol):
    """What the executor needs to try a task once and to reset it for a retry."""

    timeout: float | None

    def run(self, ctx: RunContext, task: Task, previous_error: str) -> None: ...

    def reset(self, task: Task, retry_count: int) -> None: ...


class LedgerAttempt:
    """Attempts backed by :func:`~ledgerun.runner.run_task` and the plan's ledger."""

    def __init__(self, client: LLMClient, cfg: Config, ws: Workspace) -> None:
        self.client = client
        self.cfg = cfg
        self.ws = ws
        self.timeout: float | None = cfg.task_timeout_seconds

    def run(self, ctx: RunContext, task: Task, previous_error: str) -> None:
        run_task(ctx, self.client, self.cfg, self.ws, task.id, previous_error)

    def reset(self, task: Task, retry_count: int) -> None:
        update_task_status(
            self.ws.tasks_path,
            task.id,
            TaskStatus.PENDING,
            retry_count=retry_count,
            lock_timeout=self.cfg.lock_timeout,
        )


def execute_with_retry(
    ctx: RunContext,
    task: Task,
    max_retries: int,
    attempt: TaskAttempt,
) -> TaskResult:
    """Try *task* up to ``max_retries + 1`` times.

    Each retry resets the task to pending and hands the previous error to the
    next attempt. Every attempt gets its own deadline. Cancellation of *ctx*
    stops further attempts.
    """
    last_error: BaseException | None = None

    for n in range(max_retries + 1):
        if ctx.cancelled:
            return TaskResult(task.id, task.title, error=Cancelled("run cancelled"), retries=n)

        if n > 0:
            log.info(f"Retrying {task.id} (attempt {n + 1}/{max_retries + 1})")
            try:
                attempt.reset(task, n)
            except LedgerunError as exc:
                log.error(f"Failed to reset {task.id} for retry: {exc}")
                return TaskResult(task.id, task.title, error=last_error, retries=n)

        attempt_ctx = ctx.child(attempt.timeout)
        previous_error = str(last_error) if last_error is not None else ""
        try:
            attempt.run(attempt_ctx, task, previous_error)
        except Cancelled as exc:
            if ctx.cancelled:
                return TaskResult(task.id, task.title, error=exc, retries=n)
            last_error = exc
        except Exception as exc:
            last_error = exc
            log.warn(f"Task {task.id} failed (attempt {n + 1}/{max_retries + 1}): {exc}")
        else:
            if n > 0:
                log.success(f"Task {task.id} succeeded after {n} retr{'y' if n == 1 else 'ies'}")
            return TaskResult(task.id, task.title, retries=n)

    return TaskResult(task.id, task.title, error=last_error, retries=max_retries)


def run_phase(
    ctx: RunContext,
    phase: Phase,
    max_parallel: int,
    max_retries: int,
    attempt: TaskAttempt,
) -> list[TaskResult]:
    """Run every unfinished task of *phase* with at most *max_parallel* in flight.

    Completed and skipped tasks yield successful results without dispatch.
    Each worker returns its own :class:`TaskResult`; results are merged here
    once all workers have joined.
    """
    results: list[TaskResult] = []
    todo: list[Task] = []
    for task in phase.tasks:
        if task.is_done:
            results.append(TaskResult(task.id, task.title))
        else:
            todo.append(task)

    if not todo:
        return results

    def worker(task: Task) -> TaskResult:
        # A slot was just obtained; do not start work for a cancelled run.
        if ctx.cancelled:
            return TaskResult(task.id, task.title, error=Cancelled("run cancelled"))
        return execute_with_retry(ctx, task, max_retries, attempt)

    with ThreadPoolExecutor(max_workers=max(1, max_parallel), thread_name_prefix="ledgerun") as pool:
        futures = {pool.submit(worker, t): t for t in todo}
        for future in as_completed(futures):
            results.append(future.result())

    return results


def results_all_failed(results: list[TaskResult]) -> bool:
    """A phase counts as totally failed when no result succeeded (or there are none)."""
    return all(not r.ok for r in results)
