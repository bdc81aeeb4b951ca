"""Collaborator interface: the session-oriented client that performs task work."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from ledgerun.context import RunContext


@dataclass(frozen=True)
class ModelRef:
    """A ``provider/model`` pair. An empty ref means the collaborator default."""

    provider: str = ""
    model: str = ""

    @classmethod
    def parse(cls, raw: str) -> ModelRef:
        raw = (raw or "").strip()
        if not raw:
            return cls()
        provider, sep, model = raw.partition("/")
        if not sep:
            return cls(model=provider)
        return cls(provider=provider, model=model)

    def __str__(self) -> str:
        if self.provider:
            return f"{self.provider}/{self.model}"
        return self.model


@dataclass
class SessionInfo:
    id: str
    title: str = ""
    directory: str = ""


@dataclass
class Message:
    role: str
    text: str


@dataclass
class PromptResponse:
    text: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    duration_ms: int = 0


class LLMClient(Protocol):
    """Anything that can hold a conversation about a working directory.

    Every call takes the attempt's :class:`RunContext`; implementations must
    give up once it is cancelled or its deadline passes, raising
    :class:`~ledgerun.errors.Cancelled` or :class:`~ledgerun.errors.TaskTimeout`.
    Other failures raise :class:`~ledgerun.errors.EngineError`.
    """

    def create_session(self, ctx: RunContext, title: str, directory: str) -> SessionInfo: ...

    def send_prompt(
        self,
        ctx: RunContext,
        session_id: str,
        text: str,
        model: ModelRef,
        directory: str,
    ) -> PromptResponse: ...

    def get_messages(self, ctx: RunContext, session_id: str, directory: str) -> list[Message]: ...

    def delete_session(self, ctx: RunContext, session_id: str, directory: str) -> None: ...

    def abort_session(self, ctx: RunContext, session_id: str, directory: str) -> None: ...

