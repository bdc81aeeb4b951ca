"""Post-phase gates: review, hardening, checkpoint commit, summaries, questions.

Every gate is best effort. Failures are logged and never stop the run.
"""

from __future__ import annotations

from ledgerun import git_ops, log
from ledgerun.client import LLMClient, ModelRef
from ledgerun.config import Config
from ledgerun.context import RunContext
from ledgerun.errors import LedgerunError
from ledgerun.history import collect_phase_logs
from ledgerun.io_utils import write_text
from ledgerun.prompts import (
    NO_QUESTIONS_MARKER,
    build_doc_alignment_prompt,
    build_doc_review_prompt,
    build_external_assumptions_prompt,
    build_hardening_prompt,
    build_harvest_prompt,
    build_review_prompt,
    build_summary_prompt,
)
from ledgerun.runner import converse
from ledgerun.scheduler import Phase
from ledgerun.tasks.questions import append_questions, split_questions
from ledgerun.workspace import Workspace

COMMIT_PREFIX = "ledgerun"
_MAX_SUMMARY_LEN = 72


def _run_gate(
    ctx: RunContext,
    client: LLMClient,
    ws: Workspace,
    title: str,
    prompt: str,
    model: ModelRef,
) -> str | None:
    """Send one gate prompt; return the reply text, or ``None`` on failure."""
    if ctx.cancelled:
        return None
    try:
        return converse(ctx, client, title, prompt, model, str(ws.repo_dir)).text
    except LedgerunError as exc:
        log.warn(f"Gate {title} failed: {exc}")
        return None


def review_phase(ctx: RunContext, client: LLMClient, cfg: Config, ws: Workspace, phase: Phase) -> None:
    """Have the secondary model review and fix the uncommitted diff."""
    diff = git_ops.diff_head(cwd=ws.repo_dir)
    if not diff.strip():
        log.debug(f"Phase {phase.number}: no changes to review")
        return
    log.info(f"Running review gate for phase {phase.number}")
    _run_gate(
        ctx,
        client,
        ws,
        f"phase-{phase.number}-review",
        build_review_prompt(diff, ws.read_phase_summaries()),
        ModelRef.parse(cfg.review_model),
    )


def validate_external_assumptions(
    ctx: RunContext, client: LLMClient, cfg: Config, ws: Workspace, phase: Phase
) -> None:
    log.info(f"Validating external assumptions for phase {phase.number}")
    _run_gate(
        ctx,
        client,
        ws,
        f"phase-{phase.number}-ext-assumptions",
        build_external_assumptions_prompt(ws.read_phase_summaries()),
        ModelRef.parse(cfg.primary_model),
    )


def harden_domain(ctx: RunContext, client: LLMClient, cfg: Config, ws: Workspace, phase: Phase) -> None:
    log.info(f"Running domain hardening for phase {phase.number}")
    _run_gate(
        ctx,
        client,
        ws,
        f"phase-{phase.number}-domain-hardening",
        build_hardening_prompt(ws.read_phase_summaries()),
        ModelRef.parse(cfg.primary_model),
    )


def commit_message(phase: Phase) -> str:
    summary = ", ".join(t.title for t in phase.tasks)
    if len(summary) > _MAX_SUMMARY_LEN:
        summary = summary[: _MAX_SUMMARY_LEN - 3] + "..."
    return f"{COMMIT_PREFIX}: phase {phase.number} - {summary}"


def commit_phase(ws: Workspace, phase: Phase) -> bool:
    """Checkpoint the working tree. Returns ``True`` when a commit was made."""
    if not git_ops.has_changes(cwd=ws.repo_dir):
        log.info(f"Phase {phase.number}: no changes to commit")
        return False
    base = git_ops.current_head(cwd=ws.repo_dir)
    try:
        head = git_ops.commit_all(commit_message(phase), cwd=ws.repo_dir)
    except git_ops.GitError as exc:
        log.error(f"Failed to commit phase {phase.number}: {exc}")
        return False
    log.success(f"Committed phase {phase.number} ({head[:8]})")
    if base:
        log.debug(git_ops.diff_stat(base, head, cwd=ws.repo_dir))
    return True


def generate_phase_summary(
    ctx: RunContext, client: LLMClient, cfg: Config, ws: Workspace, phase: Phase
) -> None:
    """Write ``history/phase-N-summary.md`` for later tasks to build on."""
    text = _run_gate(
        ctx,
        client,
        ws,
        f"phase-{phase.number}-summary",
        build_summary_prompt(phase.number, phase.tasks),
        ModelRef.parse(cfg.primary_model),
    )
    if not text or not text.strip():
        return
    path = ws.history_dir / f"phase-{phase.number}-summary.md"
    try:
        write_text(path, text.strip() + "\n")
    except OSError as exc:
        log.warn(f"Failed to write phase summary: {exc}")
        return
    log.debug(f"Saved phase summary {path}")


def harvest_questions(
    ctx: RunContext,
    client: LLMClient,
    cfg: Config,
    ws: Workspace,
    phase: Phase,
    history_baseline: int,
) -> int:
    """Extract open questions from this phase's transcripts into ``questions.md``.

    Only transcripts numbered above *history_baseline* are read. Returns the
    number of structured questions recorded.
    """
    logs = collect_phase_logs(ws.history_dir, history_baseline)
    if not logs:
        log.debug(f"Phase {phase.number}: no transcripts to harvest")
        return 0

    reply = _run_gate(
        ctx,
        client,
        ws,
        f"phase-{phase.number}-harvest",
        build_harvest_prompt(phase.number, logs, ws.read_phase_summaries()),
        ModelRef.parse(cfg.primary_model),
    )
    if reply is None:
        return 0
    _, questions = split_questions(reply)
    content = (questions or reply).strip()
    if not content or NO_QUESTIONS_MARKER in content:
        log.debug(f"Phase {phase.number}: no questions harvested")
        return 0

    try:
        added = append_questions(
            ws.questions_path,
            content,
            source=f"phase-{phase.number}",
            note=f"Phase {phase.number} harvest",
            lock_timeout=cfg.lock_timeout,
        )
    except (LedgerunError, OSError) as exc:
        log.warn(f"Failed to record harvested questions: {exc}")
        return 0
    log.info(f"Harvested questions from phase {phase.number}")
    return added


def align_documentation(ctx: RunContext, client: LLMClient, cfg: Config, ws: Workspace) -> bool:
    """Bring docs in line with the code, review them, and commit separately.

    Returns ``True`` when a documentation commit was made.
    """
    if ctx.cancelled:
        return False
    summaries = ws.read_phase_summaries()
    log.info("Running documentation alignment")
    if _run_gate(
        ctx, client, ws, "doc-alignment", build_doc_alignment_prompt(summaries),
        ModelRef.parse(cfg.primary_model),
    ) is None:
        return False
    _run_gate(
        ctx, client, ws, "doc-alignment-review", build_doc_review_prompt(summaries),
        ModelRef.parse(cfg.review_model),
    )

    if not git_ops.has_changes(cwd=ws.repo_dir):
        log.info("No documentation changes needed")
        return False
    try:
        git_ops.commit_all(f"{COMMIT_PREFIX}: documentation alignment", cwd=ws.repo_dir)
    except git_ops.GitError as exc:
        log.warn(f"Failed to commit documentation alignment: {exc}")
        return False
    log.success("Committed documentation alignment")
    return True
