"""Shared fixtures for ledgerun tests.

File handling in tests:
- Use tmp_path for any directory or file creation so tests are isolated and cleaned up.
- Use ledgerun.io_utils read_text/write_text for consistent UTF-8 I/O.
"""

from __future__ import annotations

import itertools
import subprocess
import threading
from collections.abc import Callable
from pathlib import Path

import pytest

from ledgerun.client import Message, ModelRef, PromptResponse, SessionInfo
from ledgerun.config import Config
from ledgerun.context import RunContext
from ledgerun.io_utils import write_text
from ledgerun.tasks.ledger import write_tasks
from ledgerun.tasks.model import Task, TaskStatus
from ledgerun.workspace import Workspace


def pytest_addoption(parser: pytest.Parser) -> None:
    """Register opt-in switch for tests that call real engine CLIs."""
    parser.addoption(
        "--run-e2e",
        action="store_true",
        default=False,
        help="Run end-to-end tests marked with 'e2e'.",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip e2e tests unless explicitly enabled."""
    if config.getoption("--run-e2e"):
        return

    skip_e2e = pytest.mark.skip(
        reason="E2E tests are skipped by default. Use --run-e2e to include them.",
    )
    for item in items:
        if "e2e" in item.keywords:
            item.add_marker(skip_e2e)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep LEDGERUN_* variables from the developer's shell out of tests."""
    for name in (
        "LEDGERUN_ENGINE",
        "LEDGERUN_PRIMARY_MODEL",
        "LEDGERUN_SECONDARY_MODEL",
        "LEDGERUN_MAX_PARALLEL",
        "LEDGERUN_MAX_RETRIES",
        "LEDGERUN_TASK_TIMEOUT",
        "LEDGERUN_TASK_BRIEFING",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    """Create a minimal git repo for testing."""
    subprocess.run(["git", "init"], cwd=tmp_path, capture_output=True, check=True)
    subprocess.run(
        ["git", "config", "user.name", "Test"], cwd=tmp_path, capture_output=True
    )
    subprocess.run(
        ["git", "config", "user.email", "test@test"], cwd=tmp_path, capture_output=True
    )
    subprocess.run(
        ["git", "config", "commit.gpgsign", "false"], cwd=tmp_path, capture_output=True
    )
    write_text(tmp_path / "README.md", "# Test")
    subprocess.run(["git", "add", "README.md"], cwd=tmp_path, capture_output=True)
    subprocess.run(
        ["git", "commit", "-m", "Initial"], cwd=tmp_path, capture_output=True
    )
    return tmp_path


def _make_task(
    id: str,
    title: str = "",
    status: TaskStatus = TaskStatus.PENDING,
    group: int = 1,
    depends_on: list[str] | None = None,
    description: str = "",
    files: list[str] | None = None,
) -> Task:
    return Task(
        id=id,
        title=title or f"Task {id}",
        status=status,
        parallel_group=group,
        depends_on=depends_on or [],
        description=description or f"Do {id}.",
        files=files or [],
    )


@pytest.fixture
def make_task():
    """Factory fixture that creates Task instances."""
    return _make_task


def _make_plan(repo: Path, tasks: list[Task], slug: str = "demo") -> Workspace:
    ws = Workspace(slug=slug, repo_dir=repo)
    ws.create()
    write_text(ws.requirements_path, "# Requirements\n\nThe tool must greet users.\n")
    write_text(ws.research_path, "# Research\n\nNothing surprising.\n")
    write_text(ws.design_path, "# Design\n\nOne module per greeting.\n")
    write_text(ws.tasks_path, write_tasks(tasks))
    return ws


@pytest.fixture
def make_plan():
    """Factory fixture that writes a plan workspace with every prerequisite."""
    return _make_plan


@pytest.fixture
def cfg() -> Config:
    """Fast config: no briefing, no retries, short lock timeout."""
    return Config(max_parallel=4, max_retries=0, task_timeout="30s", task_briefing=False, lock_timeout=5.0)


class FakeClient:
    """In-memory :class:`~ledgerun.client.LLMClient`.

    - ``prompts`` records ``(session_title, text)`` for every prompt sent.
    - ``failures`` maps a session-title prefix to exceptions raised, in order,
      by successive prompts to matching sessions.
    - ``replies`` maps a session-title prefix to the reply text.
    - ``delay`` makes each prompt wait (respecting cancellation and deadlines).
    - ``on_prompt`` is called with ``(title, text, directory)`` before replying;
      use it to touch files in the repository as an agent would.
    """

    def __init__(
        self,
        *,
        replies: dict[str, str] | None = None,
        failures: dict[str, list[Exception]] | None = None,
        delay: float = 0.0,
        on_prompt: Callable[[str, str, str], None] | None = None,
    ) -> None:
        self.replies = replies or {}
        self.failures = {k: list(v) for k, v in (failures or {}).items()}
        self.delay = delay
        self.on_prompt = on_prompt
        self.prompts: list[tuple[str, str]] = []
        self.models: list[tuple[str, ModelRef]] = []
        self.deleted: list[str] = []
        self.active = 0
        self.max_active = 0
        self._sessions: dict[str, SessionInfo] = {}
        self._messages: dict[str, list[Message]] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def _match(self, table: dict, title: str):
        for prefix in sorted(table, key=len, reverse=True):
            if title.startswith(prefix):
                return prefix
        return None

    def prompts_for(self, prefix: str) -> list[str]:
        return [text for title, text in self.prompts if title.startswith(prefix)]

    def create_session(self, ctx: RunContext, title: str, directory: str) -> SessionInfo:
        ctx.check()
        with self._lock:
            info = SessionInfo(id=f"s{next(self._ids)}", title=title, directory=directory)
            self._sessions[info.id] = info
            self._messages[info.id] = []
        return info

    def send_prompt(
        self,
        ctx: RunContext,
        session_id: str,
        text: str,
        model: ModelRef,
        directory: str,
    ) -> PromptResponse:
        title = self._sessions[session_id].title
        with self._lock:
            self.prompts.append((title, text))
            self.models.append((title, model))
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.delay and ctx.wait(self.delay):
                ctx.check()
            ctx.check()
            with self._lock:
                key = self._match(self.failures, title)
                exc = self.failures[key].pop(0) if key and self.failures[key] else None
            if exc is not None:
                raise exc
            if self.on_prompt is not None:
                self.on_prompt(title, text, directory)
            key = self._match(self.replies, title)
            reply = self.replies[key] if key else "done"
        finally:
            with self._lock:
                self.active -= 1
        self._messages[session_id] += [Message("user", text), Message("assistant", reply)]
        return PromptResponse(text=reply)

    def get_messages(self, ctx: RunContext, session_id: str, directory: str) -> list[Message]:
        return list(self._messages.get(session_id, []))

    def delete_session(self, ctx: RunContext, session_id: str, directory: str) -> None:
        with self._lock:
            self.deleted.append(self._sessions.pop(session_id).title)

    def abort_session(self, ctx: RunContext, session_id: str, directory: str) -> None:
        pass


@pytest.fixture
def make_client():
    """The FakeClient class; call it with the scripting arguments a test needs."""
    return FakeClient
