"""
Retry policy for job polling and push-channel polling.

The policy is a pure decision: given how many attempts have failed and
the fault that ended the last one, return how long to wait before the
next attempt, or None to abort. Callers own the sleeping.
"""

from __future__ import annotations

import random
from typing import Iterator, Optional

from .base import RateLimitError, is_permanent


class RetryPolicy:
    """Exponential backoff with an attempt cap."""

    def __init__(
        self,
        max_attempts: int = 30,
        base_delay: float = 3.0,
        max_delay: float = 60.0,
        exponential_base: float = 2.0,
        jitter: bool = False,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if base_delay < 0 or max_delay < 0:
            raise ValueError("delays must be non-negative")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter

    @classmethod
    def from_defaults(cls, defaults) -> "RetryPolicy":
        """Build from a ``StreamDefaults`` instance."""
        return cls(
            max_attempts=defaults.backoff_max_attempts,
            base_delay=defaults.backoff_base_delay_s,
            max_delay=defaults.backoff_max_delay_s,
            jitter=defaults.backoff_jitter,
        )

    def get_delay(self, retry: int) -> float:
        """Delay before retry number ``retry`` (0-based)."""
        delay = self.base_delay * (self.exponential_base ** max(retry, 0))
        delay = min(delay, self.max_delay)

        if self.jitter:
            delay *= (0.5 + random.random())

        return delay

    def decide(self, attempts: int, error: Optional[BaseException] = None) -> Optional[float]:
        """
        Decide what happens after a failed attempt.

        Args:
            attempts: Attempts made so far, including the one that failed.
            error: The fault behind the failure. None means "not done yet".

        Returns:
            Seconds to wait before the next attempt, or None to abort.
        """
        if error is not None and is_permanent(error):
            return None
        if attempts >= self.max_attempts:
            return None

        delay = self.get_delay(attempts - 1)
        if isinstance(error, RateLimitError) and error.retry_after:
            delay = max(delay, float(error.retry_after))
        return delay

    def schedule(self) -> Iterator[float]:
        """The full sequence of waits for a run that never succeeds."""
        for retry in range(self.max_attempts - 1):
            yield self.get_delay(retry)

    def __repr__(self) -> str:
        return (
            f"RetryPolicy(max_attempts={self.max_attempts}, "
            f"base_delay={self.base_delay}, max_delay={self.max_delay})"
        )
