"""Cancellation and deadline propagation for a run.

A :class:`RunContext` is handed from the driver down to every attempt. Child
contexts inherit the parent's cancellation and may add a tighter deadline.
"""

from __future__ import annotations

import threading
import time

from ledgerun.errors import Cancelled, TaskTimeout

_POLL_INTERVAL = 0.05


class RunContext:
    """Cancellation flag plus an optional monotonic deadline."""

    def __init__(self, *, timeout: float | None = None, parent: RunContext | None = None) -> None:
        self._event = threading.Event()
        self._parent = parent
        self.timeout = timeout
        self.deadline = time.monotonic() + timeout if timeout is not None else None

    def child(self, timeout: float | None = None) -> RunContext:
        return RunContext(timeout=timeout, parent=self)

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._parent.cancelled if self._parent else False

    @property
    def expired(self) -> bool:
        if self.deadline is not None and time.monotonic() >= self.deadline:
            return True
        return self._parent.expired if self._parent else False

    @property
    def done(self) -> bool:
        return self.cancelled or self.expired

    def remaining(self) -> float | None:
        """Seconds until the nearest deadline in the chain, or ``None``."""
        own = None
        if self.deadline is not None:
            own = max(self.deadline - time.monotonic(), 0.0)
        inherited = self._parent.remaining() if self._parent else None
        if own is None:
            return inherited
        if inherited is None:
            return own
        return min(own, inherited)

    def error(self) -> Exception | None:
        if self.cancelled:
            return Cancelled("run cancelled")
        if self.expired:
            return TaskTimeout(f"timed out after {self._effective_timeout():g}s")
        return None

    def check(self) -> None:
        """Raise :class:`Cancelled` or :class:`TaskTimeout` if the context is done."""
        err = self.error()
        if err is not None:
            raise err

    def wait(self, seconds: float) -> bool:
        """Sleep up to *seconds*; return ``True`` early if the context finished."""
        end = time.monotonic() + seconds
        while True:
            if self.done:
                return True
            left = end - time.monotonic()
            if left <= 0:
                return False
            time.sleep(min(_POLL_INTERVAL, left))

    def _effective_timeout(self) -> float:
        ctx: RunContext | None = self
        while ctx is not None:
            if ctx.timeout is not None and ctx.deadline is not None and time.monotonic() >= ctx.deadline:
                return ctx.timeout
            ctx = ctx._parent
        return 0.0
