"""Bounded retry policy for resolver calls."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from refreshstore.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry an async call up to ``retries`` extra times.

    Retry ``n`` (1-based) waits ``min(delay * backoff ** (n - 1), max_delay)``
    seconds first. With ``delay=0`` retries happen back to back.
    """

    retries: int = 10
    delay: float = 0.1
    backoff: float = 2.0
    max_delay: float = 30.0

    def __post_init__(self) -> None:
        if self.retries < 0:
            raise ValueError("retries must be non-negative")
        if self.delay < 0 or self.max_delay < 0:
            raise ValueError("retry delays must be non-negative")
        if self.backoff < 1:
            raise ValueError("backoff must be at least 1")

    @property
    def max_attempts(self) -> int:
        return self.retries + 1

    def delay_for(self, attempt: int) -> float:
        if self.delay == 0:
            return 0.0
        try:
            return min(self.delay * self.backoff ** (attempt - 1), self.max_delay)
        except OverflowError:
            # Far past the cap once the power no longer fits in a float.
            return self.max_delay

    async def run(self, func: Callable[[], Awaitable[T]], *, label: str = "") -> T:
        """Await ``func()`` until it succeeds or the attempts run out.

        The exception of the last attempt propagates unchanged.
        """

        attempt = 0
        while True:
            try:
                return await func()
            except Exception as exc:
                attempt += 1
                if attempt > self.retries:
                    logger.debug(
                        "retries exhausted",
                        extra={"key": label, "attempt": attempt, "error": str(exc)},
                    )
                    raise
                wait = self.delay_for(attempt)
                logger.warning(
                    "retrying resolution",
                    extra={"key": label, "attempt": attempt, "error": str(exc)},
                )
                await asyncio.sleep(wait)


__all__ = ["RetryPolicy"]
