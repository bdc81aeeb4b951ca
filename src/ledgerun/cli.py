"""ledgerun CLI.

Installed as the ``ledgerun`` console_script.
"""

from __future__ import annotations

import signal
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

import click

from ledgerun import __version__, log
from ledgerun.client import LLMClient
from ledgerun.config import Config, resolve_repo_root
from ledgerun.context import RunContext
from ledgerun.engines.registry import ENGINE_NAMES, get_engine
from ledgerun.engines.session import EngineClient
from ledgerun.errors import LedgerunError
from ledgerun.tasks.ledger import get_runnable_tasks, load_tasks
from ledgerun.workspace import Workspace, list_plans, resolve_plan

CONTEXT_SETTINGS = dict(help_option_names=["-h", "--help"])

EXIT_SETUP_ERROR = 1
EXIT_INTERRUPTED = 130


@dataclass
class _State:
    repo_dir: Path
    verbose: bool


def _make_client(cfg: Config) -> LLMClient:
    """Build the collaborator for *cfg*; exits when the engine CLI is missing."""
    try:
        engine = get_engine(cfg.engine)
    except ValueError as exc:
        raise click.UsageError(str(exc)) from None
    problem = engine.check_available()
    if problem:
        log.error(problem)
        raise SystemExit(EXIT_SETUP_ERROR)
    return EngineClient(engine)


@contextmanager
def _cancel_on_signals(run_ctx: RunContext) -> Iterator[None]:
    """Turn SIGINT/SIGTERM into cancellation of *run_ctx* for the duration."""
    interrupts = 0

    def on_signal(signum: int, _frame: object) -> None:
        nonlocal interrupts
        interrupts += 1
        if interrupts > 1:
            raise KeyboardInterrupt
        log.warn(f"Interrupt received (signal {signum}). Finishing current work...")
        run_ctx.cancel()

    originals = {}
    for sig in (signal.SIGINT, getattr(signal, "SIGTERM", None)):
        if sig is None:
            continue
        try:
            originals[sig] = signal.getsignal(sig)
            signal.signal(sig, on_signal)
        except (OSError, RuntimeError, ValueError):
            continue
    try:
        yield
    finally:
        for sig, handler in originals.items():
            try:
                signal.signal(sig, handler)
            except (OSError, RuntimeError, ValueError):
                continue


def _resolve_workspace(state: _State, slug: str) -> Workspace:
    try:
        return resolve_plan(slug, state.repo_dir)
    except LedgerunError as exc:
        log.error(str(exc))
        raise SystemExit(EXIT_SETUP_ERROR) from None


@click.group(context_settings=CONTEXT_SETTINGS)
@click.option(
    "--repo",
    "repo_dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Repository root (default: the enclosing git repository)",
)
@click.option("-v", "--verbose", is_flag=True, help="Show debug output")
@click.version_option(__version__, prog_name="ledgerun")
@click.pass_context
def main(ctx: click.Context, repo_dir: Path | None, verbose: bool) -> None:
    """ledgerun - execute a task ledger with parallel coding agents.

    \b
    EXAMPLES:
      ledgerun plans                          # List plans in this repository
      ledgerun status my-feature              # Show task status
      ledgerun execute my-feature             # Run every pending phase
      ledgerun task my-feature --id task-003  # Run a single task once
    """
    log.set_verbose(verbose)
    ctx.obj = _State(repo_dir=(repo_dir or resolve_repo_root()).resolve(), verbose=verbose)


@main.command()
@click.argument("slug", default="")
@click.option("--engine", type=click.Choice(ENGINE_NAMES), default=None, help="Coding agent CLI to use")
@click.option("--primary-model", default=None, help="provider/model for task work")
@click.option("--secondary-model", default=None, help="provider/model for reviews")
@click.option("--max-parallel", type=int, default=None, help="Max concurrent tasks per phase")
@click.option("--max-retries", type=int, default=None, help="Retries per task after the first attempt")
@click.option("--task-timeout", default=None, help="Per-attempt timeout, e.g. 30m, 90s, 1h30m")
@click.option("--no-briefing", is_flag=True, help="Skip the per-task briefing step")
@click.pass_obj
def execute(
    state: _State,
    slug: str,
    engine: str | None,
    primary_model: str | None,
    secondary_model: str | None,
    max_parallel: int | None,
    max_retries: int | None,
    task_timeout: str | None,
    no_briefing: bool,
) -> None:
    """Run every unfinished phase of a plan."""
    from ledgerun.driver import execute as run_execute

    ws = _resolve_workspace(state, slug)
    cfg = Config(verbose=state.verbose)
    if engine:
        cfg.engine = engine
    if primary_model is not None:
        cfg.primary_model = primary_model
    if secondary_model is not None:
        cfg.secondary_model = secondary_model
    if max_parallel is not None:
        cfg.max_parallel = max(1, max_parallel)
    if max_retries is not None:
        cfg.max_retries = max(0, max_retries)
    if task_timeout:
        cfg.task_timeout = task_timeout
    if no_briefing:
        cfg.task_briefing = False

    client = _make_client(cfg)
    run_ctx = RunContext()
    log.info(f"Executing plan {ws.slug} with {cfg.engine} (max parallel {cfg.max_parallel})")
    try:
        with _cancel_on_signals(run_ctx):
            report = run_execute(run_ctx, client, cfg, ws)
    except LedgerunError as exc:
        log.error(str(exc))
        raise SystemExit(EXIT_SETUP_ERROR) from None

    if report.failed_tasks:
        log.warn(f"Failed tasks: {', '.join(report.failed_tasks)}")
    if report.cancelled:
        raise SystemExit(EXIT_INTERRUPTED)


@main.command()
@click.argument("slug", default="")
@click.option("--id", "task_id", default="", help="Task ID (default: the only runnable task)")
@click.option("--engine", type=click.Choice(ENGINE_NAMES), default=None, help="Coding agent CLI to use")
@click.option("--task-timeout", default=None, help="Timeout for this attempt")
@click.pass_obj
def task(state: _State, slug: str, task_id: str, engine: str | None, task_timeout: str | None) -> None:
    """Run a single attempt of one task."""
    from ledgerun.runner import run_task

    ws = _resolve_workspace(state, slug)
    cfg = Config(verbose=state.verbose)
    if engine:
        cfg.engine = engine
    if task_timeout:
        cfg.task_timeout = task_timeout

    try:
        ws.check_prerequisites()
        client = _make_client(cfg)
        run_ctx = RunContext(timeout=cfg.task_timeout_seconds)
        with _cancel_on_signals(run_ctx):
            done = run_task(run_ctx, client, cfg, ws, task_id)
    except LedgerunError as exc:
        log.error(str(exc))
        raise SystemExit(EXIT_SETUP_ERROR) from None
    log.success(f"Task {done.id} completed")


@main.command()
@click.argument("slug", default="")
@click.pass_obj
def status(state: _State, slug: str) -> None:
    """Show the tasks of a plan and which are runnable."""
    from ledgerun.progress import format_progress, print_task_table
    from ledgerun.scheduler import build_phases

    ws = _resolve_workspace(state, slug)
    try:
        tasks = load_tasks(ws.tasks_path)
        phases = build_phases(tasks)
    except FileNotFoundError:
        log.error(f"No ledger at {ws.tasks_path}")
        raise SystemExit(EXIT_SETUP_ERROR) from None
    except LedgerunError as exc:
        log.error(str(exc))
        raise SystemExit(EXIT_SETUP_ERROR) from None

    done = sum(1 for p in phases if p.all_completed())
    log.emit(f"[bold]Plan {ws.slug}[/bold]")
    print_task_table(tasks, get_runnable_tasks(tasks))
    log.emit("")
    log.emit(format_progress(done, len(phases), tasks))


@main.command()
@click.pass_obj
def plans(state: _State) -> None:
    """List plans in the repository."""
    found = list_plans(state.repo_dir)
    if not found:
        log.info(f"No plans in {state.repo_dir}")
        return
    for ws in found:
        marker = "" if ws.tasks_path.is_file() else " [dim](no tasks.md)[/dim]"
        log.emit(f"  {ws.slug}{marker}")


if __name__ == "__main__":
    main()
