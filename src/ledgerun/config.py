"""Configuration defaults, env vars, and runtime options for ledgerun."""

from __future__ import annotations

import os
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path

from ledgerun import log

DEFAULT_TASK_TIMEOUT = 30 * 60.0

_DURATION_RE = re.compile(r"(\d+(?:\.\d+)?)(h|m|s)")
_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


def parse_duration(raw: str | float | int | None, default: float = DEFAULT_TASK_TIMEOUT) -> float:
    """Parse ``"90s"``, ``"5m"``, ``"1h30m"`` or a bare number of seconds.

    Malformed or non-positive input falls back to *default*.
    """
    if raw is None:
        return default
    if isinstance(raw, (int, float)):
        return float(raw) if raw > 0 else default

    text = raw.strip().lower()
    if not text:
        return default
    try:
        seconds = float(text)
        return seconds if seconds > 0 else default
    except ValueError:
        pass

    total = 0.0
    pos = 0
    for m in _DURATION_RE.finditer(text):
        if m.start() != pos:
            break
        value, unit = float(m.group(1)), m.group(2)
        total += value * {"h": 3600, "m": 60, "s": 1}[unit]
        pos = m.end()
    if pos != len(text) or total <= 0:
        log.warn(f"Invalid duration {raw!r}, using {default:g}s")
        return default
    return total


def _env_int(name: str, current: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return current
    try:
        return int(raw)
    except ValueError:
        log.warn(f"Ignoring {name}={raw!r}: not an integer")
        return current


def _env_bool(name: str, current: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return current
    value = raw.strip().lower()
    if value in _TRUTHY:
        return True
    if value in _FALSY:
        return False
    log.warn(f"Ignoring {name}={raw!r}: not a boolean")
    return current


@dataclass
class Config:
    """Runtime configuration; ``LEDGERUN_*`` env vars override the defaults."""

    # Collaborator
    engine: str = "claude"
    primary_model: str = ""
    secondary_model: str = ""

    # Execution
    max_parallel: int = 4
    max_retries: int = 15
    task_timeout: str = "30m"
    lock_timeout: float = 5.0
    task_briefing: bool = True

    # Misc
    verbose: bool = False

    def __post_init__(self) -> None:
        self.engine = os.environ.get("LEDGERUN_ENGINE") or self.engine
        self.primary_model = os.environ.get("LEDGERUN_PRIMARY_MODEL") or self.primary_model
        self.secondary_model = os.environ.get("LEDGERUN_SECONDARY_MODEL") or self.secondary_model
        self.max_parallel = _env_int("LEDGERUN_MAX_PARALLEL", self.max_parallel)
        self.max_retries = _env_int("LEDGERUN_MAX_RETRIES", self.max_retries)
        self.task_timeout = os.environ.get("LEDGERUN_TASK_TIMEOUT") or self.task_timeout
        self.task_briefing = _env_bool("LEDGERUN_TASK_BRIEFING", self.task_briefing)

        self.max_parallel = max(1, self.max_parallel)
        self.max_retries = max(0, self.max_retries)

    @property
    def task_timeout_seconds(self) -> float:
        return parse_duration(self.task_timeout)

    @property
    def review_model(self) -> str:
        """Model used for reviews; the primary model when no secondary is set."""
        return self.secondary_model or self.primary_model


def resolve_repo_root() -> Path:
    """Return the git repository root, falling back to cwd."""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--show-toplevel"],
            capture_output=True,
            text=True,
            check=True,
        )
        return Path(result.stdout.strip())
    except (subprocess.CalledProcessError, FileNotFoundError):
        return Path.cwd()
