"""Unit tests for CallContext cancellation and deadlines."""

import asyncio

import pytest

from cachestore.core.storage import CallContext
from cachestore.core.storage.context import CANCELLED, DEADLINE_EXCEEDED


class TestCallContext:
    """Tests for the per-call cancellation token."""

    def test_new_context_is_not_cancelled(self):
        ctx = CallContext()

        assert not ctx.cancelled
        assert ctx.reason is None
        assert ctx.remaining() is None

    def test_cancel_is_idempotent(self):
        ctx = CallContext()

        ctx.cancel()
        ctx.cancel()

        assert ctx.cancelled
        assert ctx.reason == CANCELLED

    def test_negative_timeout_is_rejected(self):
        with pytest.raises(ValueError, match="cannot be negative"):
            CallContext(timeout=-1)

    def test_remaining_counts_down(self):
        ctx = CallContext.with_timeout(60)

        remaining = ctx.remaining()

        assert remaining is not None
        assert 0 < remaining <= 60

    def test_zero_timeout_is_already_expired(self):
        ctx = CallContext(timeout=0)

        assert ctx.cancelled
        assert ctx.reason == DEADLINE_EXCEEDED
        assert ctx.remaining() == 0.0

    def test_explicit_cancel_wins_over_deadline(self):
        ctx = CallContext(timeout=0)
        ctx.cancel()

        assert ctx.reason == CANCELLED

    @pytest.mark.asyncio
    async def test_wait_returns_on_cancel(self):
        ctx = CallContext()
        waiter = asyncio.create_task(ctx.wait())
        await asyncio.sleep(0)

        ctx.cancel()

        assert await asyncio.wait_for(waiter, timeout=1) == CANCELLED

    @pytest.mark.asyncio
    async def test_wait_returns_on_deadline(self):
        ctx = CallContext(timeout=0.01)

        assert await asyncio.wait_for(ctx.wait(), timeout=1) == DEADLINE_EXCEEDED
        assert ctx.cancelled

    @pytest.mark.asyncio
    async def test_wait_without_deadline_blocks(self):
        """A context nobody cancels never resolves on its own."""
        ctx = CallContext()

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(ctx.wait(), timeout=0.05)
