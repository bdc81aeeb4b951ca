"""Session-oriented client over one-shot coding-agent CLIs."""

from __future__ import annotations

import itertools
import threading
from dataclasses import dataclass, field
from pathlib import Path

from ledgerun import log
from ledgerun.client import Message, ModelRef, PromptResponse, SessionInfo
from ledgerun.context import RunContext
from ledgerun.engines.base import ERROR_CANCELLED, ERROR_TIMEOUT, EngineBase
from ledgerun.errors import Cancelled, EngineError, TaskTimeout


@dataclass
class _Session:
    info: SessionInfo
    messages: list[Message] = field(default_factory=list)
    aborted: threading.Event = field(default_factory=threading.Event)


class EngineClient:
    """:class:`~ledgerun.client.LLMClient` backed by an :class:`EngineBase`.

    Each prompt runs the engine CLI once in the session's directory. The
    transcript is kept in memory so it can be saved to history afterwards.
    """

    def __init__(self, engine: EngineBase) -> None:
        self.engine = engine
        self._sessions: dict[str, _Session] = {}
        self._lock = threading.Lock()
        self._ids = itertools.count(1)

    def _get(self, session_id: str) -> _Session:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise EngineError(f"unknown session {session_id!r}")
        return session

    def create_session(self, ctx: RunContext, title: str, directory: str) -> SessionInfo:
        ctx.check()
        with self._lock:
            session_id = f"{self.engine.name}-{next(self._ids)}"
            info = SessionInfo(id=session_id, title=title, directory=directory)
            self._sessions[session_id] = _Session(info=info)
        log.debug(f"Session {session_id} created: {title}")
        return info

    def send_prompt(
        self,
        ctx: RunContext,
        session_id: str,
        text: str,
        model: ModelRef,
        directory: str,
    ) -> PromptResponse:
        session = self._get(session_id)
        ctx.check()
        session.messages.append(Message(role="user", text=text))

        result = self.engine.run_sync(
            text,
            model=model.model,
            cwd=Path(directory) if directory else None,
            timeout=ctx.remaining(),
            should_cancel=lambda: ctx.cancelled or session.aborted.is_set(),
        )

        if result.error == ERROR_TIMEOUT:
            raise ctx.error() or TaskTimeout(f"{self.engine.name} timed out")
        if result.error == ERROR_CANCELLED:
            raise Cancelled(f"{self.engine.name} session {session_id} aborted")
        if result.error:
            raise EngineError(f"{self.engine.name}: {result.error}")

        session.messages.append(Message(role="assistant", text=result.text))
        return PromptResponse(
            text=result.text,
            input_tokens=result.input_tokens,
            output_tokens=result.output_tokens,
            duration_ms=result.duration_ms,
        )

    def get_messages(self, ctx: RunContext, session_id: str, directory: str) -> list[Message]:
        return list(self._get(session_id).messages)

    def delete_session(self, ctx: RunContext, session_id: str, directory: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)
        log.debug(f"Session {session_id} deleted")

    def abort_session(self, ctx: RunContext, session_id: str, directory: str) -> None:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is not None:
            session.aborted.set()
