"""
Retry Gateway
=============
One retry/backoff implementation for every external call.

Call sites differ only in their ``RetryPolicy``:

    ocr       3 retries, 2 s → 4 s → 8 s (capped at 15 s)
    rewrite   3 retries, same backoff
    scoring   3 retries, same backoff
    detail    2 retries, fixed 3 s

Backoff sleeps go through an injectable ``asyncio.sleep`` so concurrent
tile calls do not block each other and tests can record the delays.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from .errors import RetryExhaustedError, is_retryable

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]


def default_is_retryable(exc: BaseException) -> bool:
    """Rate-limit, 5xx-class and transient network errors are retried."""
    return is_retryable(exc)


@dataclass
class RetryPolicy:
    """Retry parameters for one call site."""
    max_retries: int = 3
    initial_backoff: float = 2.0
    max_backoff: float = 15.0

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.initial_backoff < 0 or self.max_backoff < 0:
            raise ValueError("backoff values must be >= 0")

    def delay_for(self, retry_number: int) -> float:
        """Sleep before retry ``retry_number`` (0-indexed)."""
        return min(self.initial_backoff * (2 ** retry_number), self.max_backoff)

    @classmethod
    def fixed(cls, max_retries: int, delay: float) -> "RetryPolicy":
        """Constant delay between attempts."""
        return cls(max_retries=max_retries, initial_backoff=delay, max_backoff=delay)


class RetryGateway:
    """
    Executes an async operation with bounded retries and exponential backoff.

    Up to ``1 + max_retries`` attempts are made. A non-retryable error
    propagates on first occurrence without sleeping; running out of
    attempts raises ``RetryExhaustedError`` carrying the last error.
    """

    def __init__(
        self,
        max_retries: int = 3,
        initial_backoff: float = 2.0,
        max_backoff: float = 15.0,
        sleep: Optional[SleepFn] = None,
    ):
        self.policy = RetryPolicy(max_retries, initial_backoff, max_backoff)
        self._sleep = sleep or asyncio.sleep

    @classmethod
    def from_policy(cls, policy: RetryPolicy, sleep: Optional[SleepFn] = None) -> "RetryGateway":
        return cls(policy.max_retries, policy.initial_backoff, policy.max_backoff, sleep=sleep)

    @property
    def max_retries(self) -> int:
        return self.policy.max_retries

    async def call(
        self,
        op: Callable[[], Awaitable[T]],
        is_retryable: Callable[[BaseException], bool] = default_is_retryable,
        operation: str = "operation",
    ) -> T:
        """
        Run ``op`` until it succeeds or attempts run out.

        Args:
            op: Zero-argument coroutine function
            is_retryable: Classifier deciding whether an error is worth retrying
            operation: Name used in log lines and in RetryExhaustedError

        Returns:
            Whatever ``op`` returns on its first successful attempt
        """
        attempts = self.policy.max_retries + 1

        for attempt in range(attempts):
            try:
                return await op()
            except Exception as e:
                if not is_retryable(e):
                    raise
                if attempt == attempts - 1:
                    logger.error(
                        f"[RETRY] {operation}: all {attempts} attempts failed "
                        f"({type(e).__name__}: {e})"
                    )
                    raise RetryExhaustedError(operation, attempts, e) from e

                delay = self.policy.delay_for(attempt)
                logger.warning(
                    f"[RETRY] {operation}: attempt {attempt + 1}/{attempts} failed "
                    f"({type(e).__name__}: {e}), retrying in {delay:.1f}s"
                )
                await self._sleep(delay)

        # attempts >= 1, so the loop always returns or raises
        raise AssertionError("unreachable")
