"""
Per-call cancellation and deadline handling.

A CallContext travels with a storage call the way a request context
does: the caller can cancel it explicitly or give it a deadline, and
the backend races its network work against ``wait()``.
"""

import asyncio
import time
from typing import Optional


CANCELLED = "cancelled"
DEADLINE_EXCEEDED = "deadline exceeded"


class CallContext:
    """
    Cancellation token with an optional deadline.

    One context can be shared by several calls that should be cancelled
    together. Create it and call ``cancel()`` from the event loop thread.
    """

    def __init__(self, timeout: Optional[float] = None) -> None:
        if timeout is not None and timeout < 0:
            raise ValueError("timeout cannot be negative")

        self._event = asyncio.Event()
        self._deadline = (
            time.monotonic() + timeout if timeout is not None else None
        )

    @classmethod
    def with_timeout(cls, seconds: float) -> "CallContext":
        return cls(timeout=seconds)

    def cancel(self) -> None:
        """Cancel every call waiting on this context."""
        self._event.set()

    def remaining(self) -> Optional[float]:
        """Seconds left until the deadline, or None without a deadline."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    @property
    def cancelled(self) -> bool:
        return self.reason is not None

    @property
    def reason(self) -> Optional[str]:
        if self._event.is_set():
            return CANCELLED
        if self._deadline is not None and time.monotonic() >= self._deadline:
            return DEADLINE_EXCEEDED
        return None

    async def wait(self) -> str:
        """
        Block until the context is cancelled or its deadline passes.

        Returns the reason. Without a deadline and without ``cancel()``
        this never returns on its own.
        """
        try:
            await asyncio.wait_for(self._event.wait(), timeout=self.remaining())
        except asyncio.TimeoutError:
            return DEADLINE_EXCEEDED
        return CANCELLED

    def __repr__(self) -> str:
        return f"CallContext(reason={self.reason!r}, remaining={self.remaining()!r})"
