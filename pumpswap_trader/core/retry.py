"""
Bounded retry with fixed back-off
"""

import asyncio
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from pumpswap_trader.core.errors import RetryExhaustedError
from pumpswap_trader.core.logger import get_logger


logger = get_logger(__name__)

T = TypeVar("T")


async def retry_until(
    operation: Callable[[], Awaitable[T]],
    predicate: Callable[[T], bool] = lambda value: value is not None,
    max_attempts: int = 50,
    delay_s: float = 1.0,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    label: str = "operation",
    error_cls: Type[RetryExhaustedError] = RetryExhaustedError
) -> T:
    """
    Call operation until its result satisfies predicate

    Args:
        operation: Zero-argument coroutine factory
        predicate: Accepts a result; falsy means "not ready yet"
        max_attempts: Total attempts, including the first
        delay_s: Sleep between attempts (not after the last one)
        retry_on: Exception types treated as "not ready yet"
        label: Name used in log events
        error_cls: RetryExhaustedError subclass raised on exhaustion

    Returns:
        First result satisfying predicate

    Raises:
        error_cls: If no attempt succeeded
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    last_error: Optional[BaseException] = None

    for attempt in range(1, max_attempts + 1):
        try:
            value = await operation()
            if predicate(value):
                if attempt > 1:
                    logger.debug("retry_succeeded", label=label, attempt=attempt)
                return value
            last_error = None
        except retry_on as e:
            last_error = e

        logger.info(
            "retry_pending",
            label=label,
            attempt=attempt,
            max_attempts=max_attempts,
            error=str(last_error) if last_error else None
        )

        if attempt < max_attempts:
            await asyncio.sleep(delay_s)

    logger.error("retry_exhausted", label=label, attempts=max_attempts)
    raise error_cls(max_attempts, last_error)
