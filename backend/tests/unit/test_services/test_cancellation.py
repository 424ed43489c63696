"""Tests for cancellation tokens"""

import asyncio

import pytest

from src.core.exceptions import RequestCancelled
from src.services.orchestrator.cancellation import CancellationToken


class TestCancellationToken:
    """Test explicit cancellation and deadlines"""

    def test_not_cancelled_initially(self):
        token = CancellationToken()

        assert not token.cancelled
        assert token.remaining() is None
        token.raise_if_cancelled()

    def test_cancel_keeps_first_reason(self):
        token = CancellationToken()
        token.cancel("client disconnected")
        token.cancel("second")

        assert token.cancelled
        assert token.reason == "client disconnected"
        with pytest.raises(RequestCancelled, match="client disconnected"):
            token.raise_if_cancelled()

    def test_deadline_with_clock(self):
        now = [0.0]
        token = CancellationToken(deadline_seconds=10, clock=lambda: now[0])

        assert token.remaining() == 10
        now[0] = 10.0

        assert token.cancelled
        assert token.reason == "deadline exceeded"
        assert token.remaining() == 0.0

    @pytest.mark.asyncio
    async def test_wait_returns_on_cancel(self):
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.01, token.cancel)

        await asyncio.wait_for(token.wait(), timeout=1)

        assert token.cancelled

    @pytest.mark.asyncio
    async def test_wait_returns_at_deadline(self):
        token = CancellationToken(deadline_seconds=0.01)

        await asyncio.wait_for(token.wait(), timeout=1)

        assert token.reason == "deadline exceeded"
