"""Bounded exponential backoff shared by status polling and the log feed."""

import asyncio
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Self

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """How many consecutive transient failures to tolerate and how long to wait.

    ``max_attempts`` is the number of consecutive failures that are retried;
    one more failure escalates to the caller.
    """

    max_attempts: int = 5
    backoff_base: float = 1.0
    backoff_max: float = 30.0
    jitter: float = 0.1

    def delay(self: Self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        if self.backoff_base <= 0:
            return 0.0
        delay = min(self.backoff_max, self.backoff_base * (2 ** (attempt - 1)))
        if self.jitter:
            delay += random.uniform(0, delay * self.jitter)
        return delay

    def exhausted(self: Self, failures: int) -> bool:
        return failures > self.max_attempts


class Backoff:
    """Counts consecutive failures against a ``RetryPolicy``."""

    def __init__(self, policy: RetryPolicy, sleep: Sleep = asyncio.sleep) -> None:
        self.policy = policy
        self.failures = 0
        self._sleep = sleep

    def reset(self) -> None:
        self.failures = 0

    async def failed(self) -> bool:
        """Record a failure and wait before the next try.

        Returns:
            False when the retry ceiling is exceeded; the caller must give up.
        """
        self.failures += 1
        if self.policy.exhausted(self.failures):
            return False
        await self._sleep(self.policy.delay(self.failures))
        return True
