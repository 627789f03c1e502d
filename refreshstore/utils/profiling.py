"""Timing helpers for resolver calls."""

from __future__ import annotations

import contextlib
import time
from dataclasses import dataclass
from typing import Any, Iterator

from .logging import get_logger

logger = get_logger(__name__)


@dataclass
class ProfileEvent:
    """A single timing measurement."""

    name: str
    duration: float


@contextlib.contextmanager
def profile(name: str, **fields: Any) -> Iterator[ProfileEvent]:
    """Measure the wrapped block and emit the duration as a debug log.

    The yielded :class:`ProfileEvent` has its ``duration`` filled in once the
    block exits, so callers may inspect it afterwards.
    """

    event = ProfileEvent(name=name, duration=0.0)
    start = time.perf_counter()
    try:
        yield event
    finally:
        event.duration = time.perf_counter() - start
        logger.debug("profile", extra={"event": name, "duration": event.duration, **fields})


__all__ = ["profile", "ProfileEvent"]
