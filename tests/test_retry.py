"""Tests for the QBO retry policy."""

from unittest.mock import AsyncMock

import pytest

from qbo_bridge.qbo.client import QBOAPIError, RateLimitError
from qbo_bridge.qbo.retry import RetryPolicy


def _waits(sleep: AsyncMock) -> list[float]:
    return [c.args[0] for c in sleep.await_args_list]


class TestRetryPolicy:
    """Tests for RetryPolicy.run."""

    @pytest.mark.asyncio
    async def test_rate_limited_twice_then_succeeds(self, fake_sleep):
        """Test 429, 429, success waits 1s then 2s and returns the result."""
        policy = RetryPolicy(sleep=fake_sleep)
        call = AsyncMock(
            side_effect=[
                RateLimitError("API error: 429", status_code=429),
                RateLimitError("API error: 429", status_code=429),
                {"QueryResponse": {}},
            ]
        )

        result = await policy.run(call, operation="query")

        assert result == {"QueryResponse": {}}
        assert call.await_count == 3
        assert _waits(fake_sleep) == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_non_retryable_status_raises_immediately(self, fake_sleep):
        """Test that a 400 is not retried."""
        policy = RetryPolicy(sleep=fake_sleep)
        call = AsyncMock(side_effect=QBOAPIError("API error: 400", status_code=400))

        with pytest.raises(QBOAPIError) as exc_info:
            await policy.run(call)

        assert exc_info.value.status_code == 400
        assert call.await_count == 1
        fake_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_last_error(self, fake_sleep):
        """Test that a persistent 503 is tried four times then raised."""
        policy = RetryPolicy(sleep=fake_sleep)
        call = AsyncMock(side_effect=QBOAPIError("API error: 503", status_code=503))

        with pytest.raises(QBOAPIError) as exc_info:
            await policy.run(call)

        assert exc_info.value.status_code == 503
        assert call.await_count == 4
        assert _waits(fake_sleep) == [1.0, 2.0, 4.0]

    @pytest.mark.asyncio
    async def test_network_errors_are_not_retried(self, fake_sleep):
        """Test that errors without a status code propagate at once."""
        policy = RetryPolicy(sleep=fake_sleep)
        call = AsyncMock(side_effect=QBOAPIError("Request failed: connection reset"))

        with pytest.raises(QBOAPIError):
            await policy.run(call)

        assert call.await_count == 1
        fake_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_server_error_500_is_retried(self, fake_sleep):
        policy = RetryPolicy(sleep=fake_sleep)
        call = AsyncMock(side_effect=[QBOAPIError("API error: 500", status_code=500), "ok"])

        assert await policy.run(call) == "ok"
        assert _waits(fake_sleep) == [1.0]

    def test_delay_doubles_per_attempt(self):
        policy = RetryPolicy(base_delay=0.5)

        assert [policy.delay_for(a) for a in range(4)] == [0.5, 1.0, 2.0, 4.0]
