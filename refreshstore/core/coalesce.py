"""Coalescing wrapper around resolver functions.

Keys that share a resolver usually share a TTL as well, so their expiry
notifications arrive together. :class:`CoalescedResolver` folds such bursts into
a single upstream call: the first caller opens a window, the resolver runs once
the window elapses, and everybody who called in the meantime (including while
the resolver is running) receives the same result or exception.
"""
from __future__ import annotations

import asyncio
import inspect
from typing import Any, Callable, Optional

from refreshstore.utils.logging import get_logger
from refreshstore.utils.profiling import profile

logger = get_logger(__name__)

DEFAULT_WINDOW = 1.0


def resolver_name(resolver: Callable[..., Any]) -> str:
    return getattr(resolver, "__qualname__", None) or repr(resolver)


class CoalescedResolver:
    """Share one pending invocation of ``resolver`` between callers."""

    def __init__(self, resolver: Callable[[], Any], *, window: float = DEFAULT_WINDOW) -> None:
        if window < 0:
            raise ValueError("window must be non-negative")
        self.resolver = resolver
        self.window = window
        self.calls = 0
        self._pending: Optional[asyncio.Future[Any]] = None
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def pending(self) -> bool:
        return self._pending is not None

    async def __call__(self) -> Any:
        if self._pending is None:
            loop = asyncio.get_running_loop()
            self._pending = loop.create_future()
            self._task = loop.create_task(self._fire(self._pending))
        # Shielded so one cancelled caller does not cancel the shared outcome.
        return await asyncio.shield(self._pending)

    async def _fire(self, future: asyncio.Future[Any]) -> None:
        try:
            if self.window:
                await asyncio.sleep(self.window)
            self.calls += 1
            name = resolver_name(self.resolver)
            with profile("resolver", resolver=name):
                result = self.resolver()
                if inspect.isawaitable(result):
                    result = await result
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            if not future.done():
                future.set_exception(exc)
        else:
            if not future.done():
                future.set_result(result)
        finally:
            self._pending = None
            self._task = None

    def __repr__(self) -> str:
        return f"CoalescedResolver({resolver_name(self.resolver)}, window={self.window})"


__all__ = ["CoalescedResolver", "DEFAULT_WINDOW", "resolver_name"]
