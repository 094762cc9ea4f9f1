"""Bounded retry with exponential backoff and per-call timeouts."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from .exceptions import RetryExhaustedError, TransientCapabilityError
from .settings import CALL_TIMEOUT_SECONDS, MAX_RETRIES, RETRY_BACKOFF_FACTOR

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_ERRORS = (TransientCapabilityError, asyncio.TimeoutError)


async def retry_async(
    operation: str,
    call: Callable[[], Awaitable[T]],
    max_attempts: int = MAX_RETRIES,
    backoff_factor: float = RETRY_BACKOFF_FACTOR,
    initial_delay: float = 1.0,
    timeout: float | None = CALL_TIMEOUT_SECONDS,
) -> T:
    """
    Run an async call with a per-attempt timeout and exponential backoff.

    A timeout is treated exactly like a transient failure. Any other
    exception propagates immediately.

    Args:
        operation: Human-readable name used in log lines
        call: Zero-argument factory returning a fresh awaitable per attempt
        max_attempts: Total attempts including the first one
        backoff_factor: Multiplier applied per attempt
        initial_delay: Delay before the second attempt, in seconds
        timeout: Per-attempt timeout in seconds (None disables it)

    Returns:
        The call's result

    Raises:
        RetryExhaustedError: If every attempt failed transiently
    """
    last_error: BaseException | None = None

    for attempt in range(max_attempts):
        try:
            if timeout is None:
                return await call()
            return await asyncio.wait_for(call(), timeout=timeout)

        except RETRYABLE_ERRORS as e:
            last_error = e
            if attempt + 1 >= max_attempts:
                break
            backoff = initial_delay * (backoff_factor ** attempt)
            logger.warning(
                f"{operation} failed (attempt {attempt + 1}/{max_attempts}): "
                f"{e!r}, retrying in {backoff:.1f}s"
            )
            if backoff > 0:
                await asyncio.sleep(backoff)

    logger.error(f"{operation} exhausted {max_attempts} attempts: {last_error!r}")
    raise RetryExhaustedError(operation, max_attempts, last_error)
