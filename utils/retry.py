"""Exponential backoff with jitter for any fallible async operation."""

from __future__ import annotations

import asyncio
import random
from collections import deque
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Deque, Optional, TypeVar

from loguru import logger

from config.settings import settings

T = TypeVar("T")

HISTORY_LIMIT = 32


@dataclass
class RetryPolicy:
    """
    Attempts an operation up to ``max_retries + 1`` times.

    The delay before attempt ``i`` (0-indexed, ``i >= 1``) is
    ``min(initial_delay * 2 ** (i - 1), max_delay)`` perturbed by a uniform
    offset in ``[-jitter, +jitter]`` of that value, floored at zero.  When every
    attempt fails the last exception propagates unchanged.
    """

    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 16.0
    jitter: float = 0.2
    label: str = "operation"
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    rand: Callable[[float, float], float] = random.uniform
    # Last HISTORY_LIMIT delays actually slept, most recent last.
    history: Deque[float] = field(default_factory=lambda: deque(maxlen=HISTORY_LIMIT), init=False, repr=False)

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")

    @classmethod
    def from_settings(cls, label: str = "operation", **overrides) -> "RetryPolicy":
        params = {
            "max_retries": settings.retry_max_retries,
            "initial_delay": settings.retry_initial_delay_seconds,
            "max_delay": settings.retry_max_delay_seconds,
            "jitter": settings.retry_jitter,
        }
        params.update(overrides)
        return cls(label=label, **params)

    def delay_for(self, attempt: int) -> float:
        """Backoff before ``attempt`` (1-based retry index), jitter applied."""
        base = min(self.initial_delay * (2 ** (attempt - 1)), self.max_delay)
        if self.jitter <= 0:
            return base
        spread = base * self.jitter
        return max(0.0, base + self.rand(-spread, spread))

    async def run(self, operation: Callable[[], Awaitable[T]]) -> T:
        last_error: Optional[BaseException] = None
        for attempt in range(self.max_retries + 1):
            if attempt > 0:
                delay = self.delay_for(attempt)
                self.history.append(delay)
                logger.debug(
                    f"{self.label}: retry {attempt}/{self.max_retries} in {delay:.3f}s "
                    f"after: {last_error}"
                )
                await self.sleep(delay)
            try:
                return await operation()
            except Exception as exc:
                last_error = exc

        logger.warning(f"{self.label}: giving up after {self.max_retries + 1} attempts: {last_error}")
        if last_error is None:
            raise RuntimeError(f"{self.label}: no attempt was made")
        raise last_error


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
) -> T:
    """Run ``operation`` under ``policy`` (settings defaults when omitted)."""
    return await (policy or RetryPolicy.from_settings()).run(operation)
