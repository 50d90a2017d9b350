"""
Bounded retry with exponential backoff for a single outbound call.

Generic on purpose: knows nothing about brokers or AI providers, only the
status-code rule. Retryable: 429, any 5xx, transport failures. Everything
else (other 4xx, programming errors) is raised on the first attempt.
After the last attempt the last error is re-raised unchanged.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import httpx

from brokerlink.errors import NetworkError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def error_status(error: BaseException) -> int | None:
    """Best-effort HTTP status of an exception (litellm, anthropic, httpx, ours)."""
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    for attr in ("status_code", "status"):
        status = getattr(error, attr, None)
        if isinstance(status, int):
            return status
    return None


def is_retryable(error: BaseException) -> bool:
    """Transient failures only: rate limits, server errors, transport errors."""
    if isinstance(error, NetworkError | httpx.TransportError):
        return True
    status = error_status(error)
    if status is None:
        return False
    return status == 429 or status >= 500


class ResilientCallExecutor:
    """Run a coroutine function with at most `max_attempts` tries."""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float | None = None,
        *,
        classify: Callable[[BaseException], bool] = is_retryable,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        name: str = "call",
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.classify = classify
        self.name = name
        self._sleep = sleep

    def delay_for(self, attempt: int) -> float:
        """Backoff before the retry that follows `attempt` (1-based)."""
        delay = self.base_delay * 2 ** (attempt - 1)
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        return delay

    async def call(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await fn(*args, **kwargs)
            except Exception as e:
                if not self.classify(e) or attempt == self.max_attempts:
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    "%s attempt %d/%d failed (status %s), retrying in %.1fs",
                    self.name,
                    attempt,
                    self.max_attempts,
                    error_status(e) or type(e).__name__,
                    delay,
                )
                await self._sleep(delay)
        raise AssertionError("unreachable")
