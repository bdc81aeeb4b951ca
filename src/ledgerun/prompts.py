"""Prompt builders for task execution and the post-phase gates."""

from __future__ import annotations

from ledgerun.io_utils import read_optional
from ledgerun.tasks.model import Task
from ledgerun.tasks.questions import QUESTIONS_SEPARATOR
from ledgerun.workspace import Workspace

NO_QUESTIONS_MARKER = "No questions identified"

_RETRY_HEADING = "## Previous Attempt Failed"


def _section(heading: str, body: str) -> str:
    body = body.strip()
    return f"## {heading}\n\n{body}\n\n" if body else ""


def _previous_error_section(previous_error: str) -> str:
    if not previous_error:
        return ""
    return (
        f"{_RETRY_HEADING}\n\n"
        "The previous attempt at this task failed with the following error. "
        "Fix the issue and complete the task:\n\n"
        f"{previous_error}\n\n"
    )


def _task_block(task: Task) -> str:
    lines = [
        f"**Task ID**: {task.id}",
        f"**Title**: {task.title}",
        f"**Description**: {task.description}",
    ]
    if task.files:
        lines.append(f"**Files**: {', '.join(task.files)}")
    return "\n".join(lines) + "\n\n"


def build_task_prompt(ws: Workspace, task: Task, previous_error: str = "") -> str:
    """Static instruction: every plan artifact followed by the task itself."""
    return (
        "You are executing a development task. Here is the context:\n\n"
        + _section("Requirements", read_optional(ws.requirements_path))
        + _section("Research", read_optional(ws.research_path))
        + _section("Design", read_optional(ws.design_path))
        + "## Your Task\n\n"
        + _task_block(task)
        + _section("Prior Phase Summaries", ws.read_phase_summaries())
        + _previous_error_section(previous_error)
        + "Complete this task. Make all necessary code changes.\n"
    )


def build_briefing_prompt(ws: Workspace, task: Task) -> str:
    """Ask the model to distill the plan into a focused brief for one task."""
    details = _task_block(task)
    if task.depends_on:
        details += f"**Depends on**: {', '.join(task.depends_on)}\n\n"
    return f"""You are a senior engineer preparing an implementation brief for another engineer.
Read the plan below and write a focused brief for the single task at the end.

The brief must cover:
1. The goal of the task and how it fits the overall design.
2. The files to create or change, and the interfaces they must expose.
3. Constraints, edge cases and conventions taken from the requirements and design.
4. How to verify the work is done.

Do not implement anything. Reply with the brief only.

{_section("Requirements", read_optional(ws.requirements_path))}{_section("Research", read_optional(ws.research_path))}{_section("Design", read_optional(ws.design_path))}{_section("Task List", read_optional(ws.tasks_path))}{_section("Prior Phase Summaries", ws.read_phase_summaries())}## Task To Brief

{details}"""


def build_briefed_prompt(ws: Workspace, task: Task, brief: str, previous_error: str = "") -> str:
    """Final instruction wrapping a generated brief plus pointers to the plan files."""
    return (
        "You are executing a development task. "
        "A senior engineer has prepared a detailed implementation brief for you.\n\n"
        f"## Implementation Brief\n\n{brief.strip()}\n\n"
        "## Reference Documents\n\n"
        "If you need additional context beyond this brief, the following plan documents "
        "are available in the repository:\n\n"
        f"- **Requirements**: `{ws.requirements_path}`\n"
        f"- **Research**: `{ws.research_path}`\n"
        f"- **Design**: `{ws.design_path}`\n"
        f"- **Tasks**: `{ws.tasks_path}`\n"
        "\nRead these files if you need deeper context on requirements, design decisions, "
        "or adjacent tasks.\n\n"
        + _previous_error_section(previous_error)
        + "Complete this task. Make all necessary code changes.\n"
    )


def build_review_prompt(diff: str, phase_summaries: str) -> str:
    return f"""Review the uncommitted changes below for correctness, missing pieces and bugs.
Fix every issue you find directly in the working tree. Do not commit.

{_section("Prior Phase Summaries", phase_summaries)}## Uncommitted Changes

```diff
{diff.rstrip()}
```
"""


def build_external_assumptions_prompt(phase_summaries: str) -> str:
    return f"""Examine the current uncommitted changes for assumptions about external systems:
APIs, file formats, command-line tools, environment variables, network services.

For each assumption that is invalid, fragile or unverifiable, repair the code in place
so it fails clearly or degrades safely. Do not commit.

{_section("Prior Phase Summaries", phase_summaries)}"""


def build_hardening_prompt(phase_summaries: str) -> str:
    return f"""Harden the current uncommitted changes. External assumptions have already been validated.

Improve error handling, input validation, logging and naming where they are weak.
Keep behaviour unchanged and keep the diff small. Do not commit.

{_section("Prior Phase Summaries", phase_summaries)}"""


def build_doc_alignment_prompt(phase_summaries: str) -> str:
    return f"""Make the documentation in this repository match the current behaviour of the code.

Update README files, docstrings and usage examples that describe removed, renamed or changed
behaviour. Do not change code behaviour. Do not commit.

{_section("Work Completed", phase_summaries)}"""


def build_doc_review_prompt(phase_summaries: str) -> str:
    return f"""Review the documentation changes in the working tree for accuracy against the code.
Fix anything that is wrong or missing. Do not commit.

{_section("Work Completed", phase_summaries)}"""


def build_summary_prompt(phase_number: int, tasks: list[Task]) -> str:
    lines = "\n".join(f"- **{t.title}**: {t.description}" for t in tasks)
    return (
        "Summarize the following completed phase in 2-3 paragraphs. "
        "Focus on what was accomplished, key decisions made, and any notable details.\n\n"
        f"## Phase {phase_number} Tasks\n\n{lines}\n"
    )


def build_harvest_prompt(phase_number: int, logs: str, phase_summaries: str) -> str:
    return f"""Read the execution transcripts from phase {phase_number} below and list every open
question, uncertainty or assumption the engineers made that a human should confirm.

Format each one as:

## Q1: <short title>
- **source**: <transcript file>
- **status**: unanswered
- **question**: <the question>
- **answer**:
- **validated_by**:

If there is nothing to ask, reply with exactly "{NO_QUESTIONS_MARKER}".
If you add any commentary, put it first and separate it from the questions with a line containing {QUESTIONS_SEPARATOR}.

{_section("Prior Phase Summaries", phase_summaries)}## Execution Transcripts

{logs.strip()}
"""
