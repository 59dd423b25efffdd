#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Retry logic for model requests."""

import asyncio
import random
from typing import Any, Awaitable, Callable, Optional, TypeVar

from taskpilot import config
from taskpilot.debug_logger import get_logger
from taskpilot.errors import OperationCancelled
from taskpilot.execution.cancellation import CancellationToken
from taskpilot.tools.errors import is_non_retryable_error

logger = get_logger()

T = TypeVar("T")

RETRYABLE_STATUS_CODES = frozenset({429, 502, 503})
RETRYABLE_MESSAGE_KEYWORDS = ("timeout", "429", "rate limit", "econnreset", "etimedout", "network")


def calculate_backoff_delay(
    attempt: int,
    initial_delay_ms: int = config.INITIAL_BACKOFF_MS,
    max_delay_ms: int = config.MAX_BACKOFF_MS,
    multiplier: float = config.BACKOFF_MULTIPLIER,
    jitter: float = config.BACKOFF_JITTER,
) -> int:
    """Exponential backoff with +/- ``jitter`` randomisation.

    Args:
        attempt: Zero-based retry index
        initial_delay_ms: Delay for attempt 0
        max_delay_ms: Upper bound, applied after jitter
        multiplier: Growth factor per attempt
        jitter: Fractional jitter (0.25 means +/-25%)

    Returns:
        Delay in milliseconds
    """
    base_delay = initial_delay_ms * (multiplier ** max(attempt, 0))
    capped_delay = min(base_delay, max_delay_ms)
    jittered = capped_delay * (1 + jitter * (random.random() * 2 - 1))
    return int(round(min(jittered, max_delay_ms)))


def _status_code(error: BaseException) -> Optional[int]:
    for attr in ("status", "status_code"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    return None


def is_cancellation_error(error: BaseException) -> bool:
    return isinstance(error, (OperationCancelled, asyncio.CancelledError))


def is_retryable_error(error: BaseException) -> bool:
    """Transient transport failure (timeouts, 429/502/503, network resets)."""
    if isinstance(error, (asyncio.TimeoutError, ConnectionError)):
        return True
    if _status_code(error) in RETRYABLE_STATUS_CODES:
        return True
    message = str(error).lower()
    return any(keyword in message for keyword in RETRYABLE_MESSAGE_KEYWORDS)


class BackoffRetryCaller:
    """Runs one async model call with classification-aware retries."""

    def __init__(
        self,
        max_retries: int = config.LLM_MAX_RETRIES,
        initial_delay_ms: int = config.INITIAL_BACKOFF_MS,
        max_delay_ms: int = config.MAX_BACKOFF_MS,
        multiplier: float = config.BACKOFF_MULTIPLIER,
        on_retry: Optional[Callable[[str, int, int, BaseException], None]] = None,
    ):
        self.max_retries = max_retries
        self.initial_delay_ms = initial_delay_ms
        self.max_delay_ms = max_delay_ms
        self.multiplier = multiplier
        self.on_retry = on_retry

    def get_backoff_delay(self, attempt: int) -> int:
        return calculate_backoff_delay(attempt, self.initial_delay_ms, self.max_delay_ms, self.multiplier)

    async def call(
        self,
        request_fn: Callable[[], Awaitable[T]],
        operation: str,
        cancel_token: Optional[CancellationToken] = None,
    ) -> T:
        """Call ``request_fn`` until it succeeds or a non-retryable error occurs.

        Args:
            request_fn: Zero-argument coroutine factory issuing the request
            operation: Label used in logs and retry callbacks
            cancel_token: Aborts both the request and any backoff sleep

        Returns:
            The value returned by ``request_fn``

        Raises:
            The last error once retries are exhausted, immediately for
            cancellation or non-retryable errors.
        """
        token = cancel_token or CancellationToken()
        attempt = 0

        while True:
            token.raise_if_cancelled()
            try:
                result = await token.run(request_fn())
                if attempt > 0:
                    logger.info(f"{operation} succeeded on retry {attempt}")
                return result
            except Exception as e:
                if is_cancellation_error(e) or is_non_retryable_error(str(e)):
                    raise
                if not is_retryable_error(e) or attempt >= self.max_retries:
                    logger.error(f"{operation} failed after {attempt + 1} attempt(s): {e}")
                    raise

                delay_ms = self.get_backoff_delay(attempt)
                attempt += 1
                logger.warning(
                    f"{operation} failed (attempt {attempt}/{self.max_retries + 1}): {e}; "
                    f"retrying in {delay_ms}ms"
                )
                if self.on_retry is not None:
                    self.on_retry(operation, attempt, delay_ms, e)
                await token.sleep(delay_ms / 1000)
