"""
Unit tests for bounded retry (core/retry.py)
"""

import pytest
from unittest.mock import AsyncMock

from pumpswap_trader.core.errors import RetryExhaustedError, SettlementTimeoutError
from pumpswap_trader.core.retry import retry_until


class TestRetryUntil:
    """Test retry_until"""

    @pytest.mark.asyncio
    async def test_first_attempt_succeeds(self):
        operation = AsyncMock(return_value=5)

        assert await retry_until(operation, delay_s=0) == 5
        assert operation.await_count == 1

    @pytest.mark.asyncio
    async def test_retries_until_predicate_holds(self):
        operation = AsyncMock(side_effect=[None, 0, 7])

        result = await retry_until(operation, predicate=lambda v: bool(v), max_attempts=5, delay_s=0)

        assert result == 7
        assert operation.await_count == 3

    @pytest.mark.asyncio
    async def test_exceptions_are_retried(self):
        operation = AsyncMock(side_effect=[ConnectionError("reset"), 3])

        assert await retry_until(operation, max_attempts=2, delay_s=0) == 3

    @pytest.mark.asyncio
    async def test_exhaustion_raises_with_last_error(self):
        operation = AsyncMock(side_effect=ConnectionError("reset"))

        with pytest.raises(RetryExhaustedError) as exc_info:
            await retry_until(operation, max_attempts=3, delay_s=0)

        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.last_error, ConnectionError)
        assert operation.await_count == 3

    @pytest.mark.asyncio
    async def test_custom_error_class(self):
        operation = AsyncMock(return_value=None)

        with pytest.raises(SettlementTimeoutError) as exc_info:
            await retry_until(operation, max_attempts=2, delay_s=0, error_cls=SettlementTimeoutError)

        assert exc_info.value.last_error is None

    @pytest.mark.asyncio
    async def test_unlisted_exception_propagates(self):
        operation = AsyncMock(side_effect=KeyError("boom"))

        with pytest.raises(KeyError):
            await retry_until(operation, max_attempts=3, delay_s=0, retry_on=(ConnectionError,))

        assert operation.await_count == 1

    @pytest.mark.asyncio
    async def test_zero_attempts_rejected(self):
        with pytest.raises(ValueError):
            await retry_until(AsyncMock(), max_attempts=0)
