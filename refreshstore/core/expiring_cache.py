"""Expire-but-keep TTL cache.

Entries are never evicted. When an entry's TTL elapses the cache marks it stale,
re-arms its clock and tells the registered expiry listeners; reads keep
returning the last written value until somebody writes a new one.
"""
from __future__ import annotations

import asyncio
import contextlib
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, Iterable, List, Optional, Tuple

from refreshstore.utils.logging import get_logger

logger = get_logger(__name__)

ExpiryListener = Callable[[Hashable, Any], None]


@dataclass
class CacheEntry:
    """Stored value plus expiry bookkeeping."""

    value: Any
    ttl: float
    expires_at: Optional[float]
    stale: bool = False


class ExpiringCache:
    """TTL cache that announces expiry instead of deleting.

    ``ttl=0`` stores a value that never expires. The periodic scan runs as an
    asyncio task started by :meth:`start` every ``check_period`` seconds
    (``default_ttl / 3`` unless given).
    """

    def __init__(
        self,
        default_ttl: float,
        *,
        check_period: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if default_ttl <= 0:
            raise ValueError("default_ttl must be positive")
        self.default_ttl = default_ttl
        self.check_period = check_period if check_period else default_ttl / 3
        if self.check_period <= 0:
            raise ValueError("check_period must be positive")
        self._clock = clock
        self._data: Dict[Hashable, CacheEntry] = {}
        self._listeners: List[ExpiryListener] = []
        self._ticker: Optional[asyncio.Task[None]] = None

    def set(self, key: Hashable, value: Any, ttl: Optional[float] = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        if ttl < 0:
            raise ValueError("ttl must be non-negative")
        expires_at = self._clock() + ttl if ttl else None
        self._data[key] = CacheEntry(value=value, ttl=ttl, expires_at=expires_at)

    def get(self, key: Hashable, default: Any = None) -> Any:
        entry = self._data.get(key)
        if entry is None:
            return default
        return entry.value

    def mget(self, keys: Iterable[Hashable]) -> Dict[Hashable, Any]:
        return {key: self._data[key].value for key in keys if key in self._data}

    def items(self) -> List[Tuple[Hashable, Any]]:
        return [(key, entry.value) for key, entry in self._data.items()]

    def keys(self) -> List[Hashable]:
        return list(self._data)

    def ttl(self, key: Hashable) -> Optional[float]:
        entry = self._data.get(key)
        return entry.ttl if entry is not None else None

    def is_stale(self, key: Hashable) -> bool:
        entry = self._data.get(key)
        return entry is not None and entry.stale

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)

    def add_expiry_listener(self, listener: ExpiryListener) -> None:
        self._listeners.append(listener)

    def remove_expiry_listener(self, listener: ExpiryListener) -> None:
        with contextlib.suppress(ValueError):
            self._listeners.remove(listener)

    def check_expired(self) -> List[Hashable]:
        """Scan once, notify listeners and return the keys that expired."""

        now = self._clock()
        expired: List[Tuple[Hashable, Any]] = []
        for key, entry in self._data.items():
            if entry.expires_at is None or entry.expires_at > now:
                continue
            entry.stale = True
            entry.expires_at = now + entry.ttl
            expired.append((key, entry.value))

        for key, value in expired:
            logger.debug("key expired", extra={"key": key})
            for listener in list(self._listeners):
                try:
                    listener(key, value)
                except Exception as exc:
                    logger.exception("expiry listener failed", extra={"key": key, "error": str(exc)})
        return [key for key, _ in expired]

    @property
    def running(self) -> bool:
        return self._ticker is not None and not self._ticker.done()

    def start(self) -> None:
        """Start the periodic scan on the running event loop."""

        if self.running:
            return
        self._ticker = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.check_period)
            self.check_expired()

    async def close(self) -> None:
        """Stop the periodic scan. Cached values stay readable."""

        if self._ticker:
            self._ticker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._ticker
            self._ticker = None


__all__ = ["ExpiringCache", "CacheEntry", "ExpiryListener"]
