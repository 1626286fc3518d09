"""Retry utilities for transient I/O failures.

Telemetry reads and persistence writes share one backoff policy: a fixed
attempt cap with exponentially growing waits, re-raising the last error.
"""

from __future__ import annotations

import asyncio
import logging

from aiohttp import ClientError
from pymongo.errors import AutoReconnect, NetworkTimeout, WriteConcernError
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

HTTP_RETRY_EXCEPTIONS: tuple[type[BaseException], ...] = (
    ClientError,
    asyncio.TimeoutError,
)
MONGO_RETRY_EXCEPTIONS: tuple[type[BaseException], ...] = (
    AutoReconnect,
    NetworkTimeout,
    WriteConcernError,
)
REDIS_RETRY_EXCEPTIONS: tuple[type[BaseException], ...] = (
    RedisConnectionError,
    RedisTimeoutError,
)


def retry_async(
    max_retries: int = 3,
    retry_delay: float = 1.0,
    backoff_factor: float = 2.0,
    retry_exceptions: tuple[type[BaseException], ...] = HTTP_RETRY_EXCEPTIONS,
):
    """Factory that returns a tenacity retry decorator.

    Args:
        max_retries: Retry attempts in addition to the first attempt.
        retry_delay: Multiplier for the exponential wait, in seconds.
        backoff_factor: Exponential base; 2.0 doubles the wait each attempt.
        retry_exceptions: Exception types that should trigger a retry.

    Example:
        @retry_async(retry_exceptions=MONGO_RETRY_EXCEPTIONS)
        async def write(update):
            await collection.update_one(...)
    """
    return retry(
        # stop_after_attempt counts the first call
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_exponential(multiplier=retry_delay, exp_base=backoff_factor),
        retry=retry_if_exception_type(retry_exceptions),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
