"""Base class for coding-agent CLI adapters."""

from __future__ import annotations

import json
import shutil
import subprocess
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

ERROR_TIMEOUT = "timeout"
ERROR_CANCELLED = "cancelled"

RATE_LIMIT_PATTERNS: tuple[str, ...] = (
    "rate limit",
    "rate_limit",
    "usage limit",
    "quota",
    "429",
    "too many requests",
)

POLICY_BLOCK_PATTERNS: tuple[str, ...] = (
    "blocked by policy",
    "read-only sandbox",
    "approval_policy",
)

_POLL_INTERVAL = 0.2


def looks_like_rate_limit(text: str) -> bool:
    lower = (text or "").lower()
    return any(p in lower for p in RATE_LIMIT_PATTERNS)


def looks_like_policy_block(text: str) -> bool:
    lower = (text or "").lower()
    return any(p in lower for p in POLICY_BLOCK_PATTERNS)


@dataclass
class EngineResult:
    """Uniform result from any engine invocation."""

    text: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    duration_ms: int = 0
    error: str = ""
    return_code: int = 0

    @property
    def ok(self) -> bool:
        return not self.error


class EngineBase(ABC):
    """Abstract engine adapter.  Subclasses implement ``build_cmd`` and ``parse_output``."""

    name: str = "base"

    @abstractmethod
    def build_cmd(self, prompt: str, model: str = "") -> list[str]:
        """Return the CLI command list for the given prompt."""
        ...

    @abstractmethod
    def parse_output(self, raw: str) -> EngineResult:
        """Parse raw stdout into an :class:`EngineResult`."""
        ...

    def env(self) -> dict[str, str] | None:
        """Environment for the child process; ``None`` inherits ours."""
        return None

    def check_available(self) -> str | None:
        """Return an error message if the engine CLI is not available, else None."""
        cmd_name = self.build_cmd("test")[0]
        if not shutil.which(cmd_name):
            return f"{cmd_name} not found in PATH"
        return None

    def run_sync(
        self,
        prompt: str,
        *,
        model: str = "",
        cwd: Path | None = None,
        timeout: float | None = None,
        should_cancel: Callable[[], bool] | None = None,
    ) -> EngineResult:
        """Execute the engine synchronously and return the parsed result.

        *timeout* bounds the whole call; *should_cancel* is polled while the
        process runs. Either one terminates the child and is reported through
        ``error`` as ``"timeout"`` or ``"cancelled"``.
        """
        cmd = self.build_cmd(prompt, model)
        start = time.monotonic()

        try:
            proc = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                cwd=cwd,
                env=self.env(),
            )
        except FileNotFoundError:
            return EngineResult(error=f"{cmd[0]} not found", return_code=-1)

        try:
            proc_stdout, proc_stderr = self._communicate_with_interrupts(
                proc, timeout=timeout, should_cancel=should_cancel
            )
        except subprocess.TimeoutExpired:
            self._terminate_process(proc)
            return EngineResult(error=ERROR_TIMEOUT, return_code=-1)
        except InterruptedError:
            self._terminate_process(proc)
            return EngineResult(error=ERROR_CANCELLED, return_code=-1)
        except KeyboardInterrupt:
            self._terminate_process(proc)
            raise

        result = self.parse_output(proc_stdout or "")
        result.return_code = proc.returncode
        if not result.duration_ms:
            result.duration_ms = int((time.monotonic() - start) * 1000)

        error = self._check_errors(proc_stdout or "")
        if error and not result.error:
            result.error = error

        # Some CLIs report argument/auth problems only on stderr.
        if proc.returncode != 0 and not result.error:
            stderr = (proc_stderr or "").strip()
            result.error = stderr.splitlines()[0] if stderr else f"exit code {proc.returncode}"

        return result

    @staticmethod
    def _communicate_with_interrupts(
        proc: subprocess.Popen[str],
        *,
        timeout: float | None,
        should_cancel: Callable[[], bool] | None = None,
    ) -> tuple[str, str]:
        """Read process output while polling for timeout and cancellation."""
        if timeout is None and should_cancel is None:
            return proc.communicate()

        deadline = time.monotonic() + timeout if timeout is not None else None
        while True:
            if should_cancel is not None and should_cancel():
                raise InterruptedError("cancelled")
            wait_timeout = _POLL_INTERVAL
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise subprocess.TimeoutExpired(proc.args, timeout or 0)
                wait_timeout = min(wait_timeout, remaining)
            try:
                return proc.communicate(timeout=wait_timeout)
            except subprocess.TimeoutExpired:
                continue

    @staticmethod
    def _terminate_process(proc: subprocess.Popen[str]) -> None:
        """Terminate a subprocess promptly, killing it if it ignores SIGTERM."""
        if proc.poll() is not None:
            return
        try:
            proc.terminate()
            proc.wait(timeout=2)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.wait(timeout=2)
        except OSError:
            pass

    @staticmethod
    def _check_errors(raw: str) -> str:
        """Detect error events in JSON-lines engine output."""
        for line in raw.splitlines():
            stripped = line.strip()
            if not stripped:
                continue
            try:
                obj = json.loads(stripped)
            except json.JSONDecodeError:
                continue
            if not isinstance(obj, dict):
                continue

            err = obj.get("error")
            if isinstance(err, dict):
                msg = str(err.get("message", "")).strip()
                code = str(err.get("type", "") or err.get("code", "")).strip()
                if looks_like_rate_limit(code):
                    return msg or "Rate limit exceeded"
                if msg:
                    return msg
            if isinstance(err, str) and err.strip():
                if looks_like_policy_block(err):
                    return "Blocked by policy"
                if looks_like_rate_limit(err):
                    return "Rate limit exceeded"
                return err.strip()

            if str(obj.get("type", "")).lower() == "error":
                msg = obj.get("message") or obj.get("text") or ""
                return str(msg).strip() or "Unknown error"
        return ""
