"""Single-task execution: one attempt of one ledger task against the collaborator."""

from __future__ import annotations

from rich.markup import escape

from ledgerun import log
from ledgerun.client import LLMClient, ModelRef, PromptResponse
from ledgerun.config import Config
from ledgerun.context import RunContext
from ledgerun.errors import (
    AmbiguousTask,
    Cancelled,
    EngineError,
    LedgerunError,
    NoRunnableTasks,
    TaskNotFound,
)
from ledgerun.history import save_history
from ledgerun.prompts import build_briefed_prompt, build_briefing_prompt, build_task_prompt
from ledgerun.tasks.ledger import find_task, get_runnable_tasks, load_tasks, update_task_status
from ledgerun.tasks.model import Task, TaskStatus
from ledgerun.workspace import Workspace


def converse(
    ctx: RunContext,
    client: LLMClient,
    title: str,
    prompt: str,
    model: ModelRef,
    directory: str,
) -> PromptResponse:
    """Run one prompt in a throwaway session. The session is always deleted."""
    session = client.create_session(ctx, title, directory)
    try:
        return client.send_prompt(ctx, session.id, prompt, model, directory)
    finally:
        _delete_session(ctx, client, session.id, directory)


def _delete_session(ctx: RunContext, client: LLMClient, session_id: str, directory: str) -> None:
    try:
        client.delete_session(ctx, session_id, directory)
    except LedgerunError as exc:
        log.warn(f"Failed to delete session {session_id}: {exc}")


def resolve_task(tasks: list[Task], task_id: str = "") -> Task:
    """Return the task named *task_id*, or the sole runnable task when it is empty."""
    if task_id:
        task = find_task(tasks, task_id)
        if task is None:
            raise TaskNotFound(task_id)
        return task

    runnable = get_runnable_tasks(tasks)
    if not runnable:
        raise NoRunnableTasks()
    if len(runnable) > 1:
        raise AmbiguousTask([t.id for t in runnable])
    log.info(f"Inferred task {runnable[0].id}: {runnable[0].title}")
    return runnable[0]


def brief_task(ctx: RunContext, client: LLMClient, cfg: Config, ws: Workspace, task: Task) -> str:
    """Ask the primary model for a focused implementation brief."""
    resp = converse(
        ctx,
        client,
        f"brief-{task.id}",
        build_briefing_prompt(ws, task),
        ModelRef.parse(cfg.primary_model),
        str(ws.repo_dir),
    )
    brief = resp.text.strip()
    if not brief:
        raise EngineError("briefing returned an empty response")
    log.debug(f"Task {task.id}: brief is {len(brief)} chars")
    return brief


def build_instruction(
    ctx: RunContext,
    client: LLMClient,
    cfg: Config,
    ws: Workspace,
    task: Task,
    previous_error: str = "",
) -> str:
    if not cfg.task_briefing:
        return build_task_prompt(ws, task, previous_error)

    log.emit("    [dim]Generating task briefing...[/dim]")
    try:
        brief = brief_task(ctx, client, cfg, ws, task)
    except Cancelled:
        raise
    except LedgerunError as exc:
        log.warn(f"Task briefing failed for {task.id}, using static prompt: {exc}")
        return build_task_prompt(ws, task, previous_error)
    return build_briefed_prompt(ws, task, brief, previous_error)


def _settle_failure(cfg: Config, ws: Workspace, task: Task, exc: BaseException) -> None:
    # An interrupted attempt goes back to pending, as after a crash.
    status = TaskStatus.PENDING if isinstance(exc, Cancelled) else TaskStatus.FAILED
    try:
        update_task_status(ws.tasks_path, task.id, status, lock_timeout=cfg.lock_timeout)
    except LedgerunError as update_exc:
        log.warn(f"Could not mark {task.id} as {status.value}: {update_exc}")


def run_task(
    ctx: RunContext,
    client: LLMClient,
    cfg: Config,
    ws: Workspace,
    task_id: str = "",
    previous_error: str = "",
) -> Task:
    """Run one attempt of a task and return it.

    The task is marked ``running`` first and ``completed`` on success. On any
    failure it is marked ``failed`` (``pending`` when cancelled) and the error
    is re-raised.
    """
    task = resolve_task(load_tasks(ws.tasks_path), task_id)
    directory = str(ws.repo_dir)

    update_task_status(ws.tasks_path, task.id, TaskStatus.RUNNING, lock_timeout=cfg.lock_timeout)
    log.emit(f"  [cyan]>[/cyan] {task.id}: {escape(task.title)}")

    try:
        ctx.check()
        session = client.create_session(ctx, f"task-{task.id}", directory)
        try:
            prompt = build_instruction(ctx, client, cfg, ws, task, previous_error)
            log.emit("    [dim]Executing task...[/dim]")
            client.send_prompt(ctx, session.id, prompt, ModelRef.parse(cfg.primary_model), directory)
            _save_transcript(ctx, client, ws, task, session.id, directory)
        finally:
            _delete_session(ctx, client, session.id, directory)

        update_task_status(ws.tasks_path, task.id, TaskStatus.COMPLETED, lock_timeout=cfg.lock_timeout)
    except Exception as exc:
        _settle_failure(cfg, ws, task, exc)
        raise

    task.status = TaskStatus.COMPLETED
    log.debug(f"Task {task.id} completed")
    return task


def _save_transcript(
    ctx: RunContext,
    client: LLMClient,
    ws: Workspace,
    task: Task,
    session_id: str,
    directory: str,
) -> None:
    try:
        messages = client.get_messages(ctx, session_id, directory)
    except LedgerunError as exc:
        log.warn(f"Failed to retrieve messages for {task.id}: {exc}")
        return
    try:
        path = save_history(ws.history_dir, task.id, messages)
    except OSError as exc:
        log.warn(f"Failed to save history for {task.id}: {exc}")
        return
    log.debug(f"Saved run history {path.name}")
