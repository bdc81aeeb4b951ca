"""Engine registry: get the right adapter by name."""

from __future__ import annotations

from ledgerun.engines.base import EngineBase
from ledgerun.engines.claude import ClaudeEngine
from ledgerun.engines.opencode import OpenCodeEngine

ENGINE_NAMES = ("claude", "opencode")


def get_engine(name: str) -> EngineBase:
    """Return an engine adapter for *name*."""
    match name:
        case "claude":
            return ClaudeEngine()
        case "opencode":
            return OpenCodeEngine()
        case _:
            raise ValueError(f"Unknown engine: {name}")
