"""Retry helpers with bounded exponential backoff."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar


T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_backoff_ms: int = 500
    max_backoff_ms: int = 8000

    def __post_init__(self) -> None:
        if self.max_attempts <= 0:
            raise ValueError("retry.max_attempts must be > 0")
        if self.base_backoff_ms <= 0:
            raise ValueError("retry.base_backoff_ms must be > 0")
        if self.max_backoff_ms < self.base_backoff_ms:
            raise ValueError("retry.max_backoff_ms must be >= base_backoff_ms")

    def backoff_for_attempt_ms(self, attempt: int) -> int:
        if attempt <= 0:
            raise ValueError("attempt must be >= 1")
        delay = self.base_backoff_ms * (2 ** (attempt - 1))
        return min(delay, self.max_backoff_ms)

    def backoff_schedule_ms(self) -> tuple[int, ...]:
        # No sleep follows the final attempt.
        return tuple(self.backoff_for_attempt_ms(attempt) for attempt in range(1, self.max_attempts))


def with_retry(
    func: Callable[[], T],
    *,
    policy: RetryPolicy,
    retry_on: tuple[type[BaseException], ...],
    sleeper: Callable[[float], None] = time.sleep,
    on_retry: Callable[[int, float, BaseException], None] | None = None,
) -> tuple[T, int]:
    """Call ``func`` until it succeeds, retrying only ``retry_on`` errors.

    Returns the value and the number of attempts used. The last retryable
    error is re-raised once attempts are exhausted; any other error
    propagates immediately.
    """
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return func(), attempt
        except retry_on as exc:
            if attempt >= policy.max_attempts:
                raise
            delay = policy.backoff_for_attempt_ms(attempt) / 1000.0
            if on_retry:
                on_retry(attempt, delay, exc)
            sleeper(delay)
    raise RuntimeError("RETRY_FAILED")
