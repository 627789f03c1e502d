"""Self-refreshing configuration store.

:class:`ConfigStore` ties the pieces together. Resolved values live in an
:class:`~refreshstore.core.expiring_cache.ExpiringCache`; when one of them
expires the store re-resolves it in the background through the shared
coalesced resolver and the retry policy, while :meth:`ConfigStore.get` keeps
serving the stale value. Keys that have no resolver of their own (typically
those seeded by spread resolvers) trigger a re-run of every spread resolver.
"""
from __future__ import annotations

import asyncio
import inspect
import json
import time
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Hashable,
    List,
    Mapping,
    Optional,
    Sequence,
    Set,
    Tuple,
    Union,
)

from refreshstore.core.coalesce import DEFAULT_WINDOW, CoalescedResolver, resolver_name
from refreshstore.core.config import (
    DEFAULT_KEY_REFRESH_RETRIES,
    DEFAULT_KEY_TTL,
    StoreSettings,
    validate_settings,
)
from refreshstore.core.expiring_cache import ExpiringCache
from refreshstore.core.registry import Resolver, ResolverRegistry
from refreshstore.core.retry import RetryPolicy
from refreshstore.utils.errors import ConfigurationError, ResolutionError
from refreshstore.utils.logging import get_logger

logger = get_logger(__name__)


class KeyState(str, Enum):
    """Lifecycle of a key's value."""

    UNRESOLVED = "unresolved"
    RESOLVING = "resolving"
    RESOLVED = "resolved"
    STALE_RESOLVING = "stale_resolving"


@dataclass(frozen=True)
class RefreshFailure:
    """Published to error listeners when a background refresh gives up."""

    key: Hashable
    error: Exception


ErrorListener = Callable[[RefreshFailure], Union[None, Awaitable[None]]]

# Marks an in-flight re-run of the spread resolvers.
_SPREAD = object()


class ConfigStore:
    """Key-value configuration with static defaults and refreshed resolvers.

    Example::

        store = ConfigStore(
            static_config={"region": "eu-west-1"},
            config_resolvers={
                "db_password": fetch_secret,
                "feature_a": {"resolver": fetch_flags, "mapper": lambda r, _: r["a"]},
                "feature_b": {"resolver": fetch_flags, "mapper": lambda r, _: r["b"], "ttl": 60},
            },
            spread_resolvers=[fetch_remote_config],
        )
        await store.init()
        store.get("feature_a")
    """

    def __init__(
        self,
        *,
        static_config: Optional[Mapping[str, Any]] = None,
        config_resolvers: Optional[Mapping[str, Any]] = None,
        spread_resolvers: Sequence[Resolver] = (),
        default_ttl: float = DEFAULT_KEY_TTL,
        key_check_period: Optional[float] = None,
        key_refresh_retries: int = DEFAULT_KEY_REFRESH_RETRIES,
        debounce_window: float = DEFAULT_WINDOW,
        retry_delay: float = 0.1,
        retry_backoff: float = 2.0,
        retry_max_delay: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if static_config is not None and not isinstance(static_config, Mapping):
            raise ConfigurationError("static_config must be a mapping")
        self.settings = validate_settings(
            static=dict(static_config or {}),
            default_ttl=default_ttl,
            key_check_period=key_check_period,
            key_refresh_retries=key_refresh_retries,
            debounce_window=debounce_window,
            retry_delay=retry_delay,
            retry_backoff=retry_backoff,
            retry_max_delay=retry_max_delay,
        )
        self._static: Mapping[str, Any] = MappingProxyType(dict(self.settings.static))
        self._registry = ResolverRegistry(config_resolvers, window=self.settings.debounce_window)
        self._spread: Tuple[CoalescedResolver, ...] = self._coalesce_spread(spread_resolvers)
        self._retry = RetryPolicy(
            retries=self.settings.key_refresh_retries,
            delay=self.settings.retry_delay,
            backoff=self.settings.retry_backoff,
            max_delay=self.settings.retry_max_delay,
        )
        self._cache = ExpiringCache(
            self.settings.default_ttl,
            check_period=self.settings.key_check_period,
            clock=clock,
        )
        self._cache.add_expiry_listener(self._on_expired)
        self._states: Dict[str, KeyState] = {key: KeyState.UNRESOLVED for key in self._registry}
        self._init_task: Optional[asyncio.Task[None]] = None
        self._error_listeners: List[ErrorListener] = []
        self._background: Set[asyncio.Task[None]] = set()
        self._refreshing: Set[Any] = set()

    @classmethod
    def from_settings(
        cls,
        settings: StoreSettings,
        *,
        config_resolvers: Optional[Mapping[str, Any]] = None,
        spread_resolvers: Sequence[Resolver] = (),
        clock: Callable[[], float] = time.monotonic,
    ) -> "ConfigStore":
        return cls(
            config_resolvers=config_resolvers,
            spread_resolvers=spread_resolvers,
            clock=clock,
            **settings.store_options(),
        )

    def _coalesce_spread(self, spread_resolvers: Sequence[Resolver]) -> Tuple[CoalescedResolver, ...]:
        if isinstance(spread_resolvers, (str, bytes, Mapping)):
            raise ConfigurationError("spread_resolvers must be a sequence of callables")
        wrappers = []
        for resolver in spread_resolvers:
            if not callable(resolver):
                raise ConfigurationError(f"spread resolver {resolver!r} is not callable")
            wrappers.append(self._registry.coalesced(resolver))
        return tuple(wrappers)

    # ------------------------------------------------------------------
    # Properties
    @property
    def static_config(self) -> Mapping[str, Any]:
        return self._static

    @property
    def default_ttl(self) -> float:
        return self.settings.default_ttl

    @property
    def key_refresh_retries(self) -> int:
        return self.settings.key_refresh_retries

    @property
    def registry(self) -> ResolverRegistry:
        return self._registry

    @property
    def cache(self) -> ExpiringCache:
        return self._cache

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry

    @property
    def initialised(self) -> bool:
        task = self._init_task
        # Failed passes clear the memo, so a finished task here succeeded.
        return task is not None and task.done() and not task.cancelled()

    # ------------------------------------------------------------------
    # Initialisation
    async def init(self) -> None:
        """Resolve every key and spread resolver once.

        Repeated and concurrent calls share the same pass. If the pass fails
        the memo is dropped and the next call starts a fresh one. Every call
        (re)starts expiry scanning, so a store can be reused after shutdown.
        """

        self._cache.start()
        if self._init_task is None:
            self._init_task = asyncio.get_running_loop().create_task(self._initialise())
        await asyncio.shield(self._init_task)

    async def _initialise(self) -> None:
        try:
            failures = await self._resolve_everything()
        except BaseException:
            self._init_task = None
            raise
        if failures:
            self._init_task = None
            for failure in failures[1:]:
                logger.error("initial resolution failed", extra={"key": failure.key, "error": str(failure)})
            raise failures[0]
        logger.info(
            "store initialised: %d keys, %d spread resolvers",
            len(self._registry),
            len(self._spread),
        )

    async def _resolve_everything(self) -> List[ResolutionError]:
        jobs = [self._resolve_key(key) for key in self._registry]
        jobs.extend(self._run_spread(wrapper) for wrapper in self._spread)
        results = await asyncio.gather(*jobs, return_exceptions=True)
        failures: List[ResolutionError] = []
        for result in results:
            if isinstance(result, ResolutionError):
                failures.append(result)
            elif isinstance(result, BaseException):
                raise result
        return failures

    async def refresh_all(self) -> None:
        """Re-resolve everything now, raising the first failure."""

        failures = await self._resolve_everything()
        if failures:
            raise failures[0]

    async def refresh(self, key: str) -> Any:
        """Re-resolve ``key`` now and return its new value.

        Keys without a resolver of their own re-run the spread resolvers.
        Failures raise :class:`ResolutionError` instead of reaching the error
        listeners.
        """

        if key in self._registry:
            return await self._resolve_key(key)
        if not self._spread:
            raise KeyError(f"no resolver can refresh {key!r}")
        await self._refresh_spread(key)
        return self.get(key)

    # ------------------------------------------------------------------
    # Resolution
    async def _resolve_key(self, key: str) -> Any:
        binding = self._registry.binding(key)
        self._states[key] = KeyState.STALE_RESOLVING if key in self._cache else KeyState.RESOLVING
        wrapper = self._registry.coalesced(binding.resolver)
        try:
            raw = await self._retry.run(wrapper, label=key)
        except Exception as exc:
            self._resolution_failed(key)
            raise ResolutionError(
                f"could not resolve {key!r} after {self._retry.max_attempts} attempts: {exc}",
                key=key,
            ) from exc
        try:
            value = binding.apply(raw, self)
        except Exception as exc:
            self._resolution_failed(key)
            raise ResolutionError(f"mapper for {key!r} failed: {exc}", key=key) from exc
        self._write(key, value, binding.ttl)
        logger.debug("key resolved", extra={"key": key})
        return value

    def _resolution_failed(self, key: str) -> None:
        self._states[key] = KeyState.STALE_RESOLVING if key in self._cache else KeyState.UNRESOLVED

    async def _run_spread(self, wrapper: CoalescedResolver, *, trigger: Optional[Hashable] = None) -> Dict[Any, Any]:
        name = resolver_name(wrapper.resolver)
        try:
            raw = await self._retry.run(wrapper, label=name)
        except Exception as exc:
            raise ResolutionError(
                f"spread resolver {name} failed after {self._retry.max_attempts} attempts: {exc}",
                key=trigger,
            ) from exc
        if not isinstance(raw, Mapping):
            raise ResolutionError(
                f"spread resolver {name} returned {type(raw).__name__}, expected a mapping",
                key=trigger,
            )
        for key, value in raw.items():
            self._write(key, value, None)
        logger.debug("spread resolved", extra={"resolver": name, "key": trigger})
        return dict(raw)

    async def _refresh_spread(self, trigger: Hashable) -> None:
        results = await asyncio.gather(
            *[self._run_spread(wrapper, trigger=trigger) for wrapper in self._spread],
            return_exceptions=True,
        )
        failures = [result for result in results if isinstance(result, BaseException)]
        if failures:
            for failure in failures[1:]:
                logger.error("spread refresh failed", extra={"key": trigger, "error": str(failure)})
            raise failures[0]

    def _write(self, key: Hashable, value: Any, ttl: Optional[float]) -> None:
        self._cache.set(key, value, ttl)
        if key in self._states:
            self._states[key] = KeyState.RESOLVED

    # ------------------------------------------------------------------
    # Background refresh
    def _on_expired(self, key: Hashable, value: Any) -> None:
        if key in self._registry:
            target: Any = key
        elif self._spread:
            target = _SPREAD
        else:
            logger.debug("expired key has no resolver", extra={"key": key})
            return
        if target in self._refreshing:
            return
        loop = asyncio.get_running_loop()
        self._refreshing.add(target)
        if target is not _SPREAD:
            self._states[key] = KeyState.STALE_RESOLVING
        task = loop.create_task(self._background_refresh(target, key))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _background_refresh(self, target: Any, key: Hashable) -> None:
        try:
            if target is _SPREAD:
                await self._refresh_spread(key)
            else:
                await self._resolve_key(key)
        except ResolutionError as exc:
            await self._publish_failure(RefreshFailure(key=key, error=exc))
        finally:
            self._refreshing.discard(target)

    def add_error_listener(self, listener: ErrorListener) -> None:
        """Subscribe to background refresh failures."""

        self._error_listeners.append(listener)

    def remove_error_listener(self, listener: ErrorListener) -> None:
        if listener in self._error_listeners:
            self._error_listeners.remove(listener)

    async def _publish_failure(self, failure: RefreshFailure) -> None:
        if not self._error_listeners:
            logger.error("key could not be refreshed", extra={"key": failure.key, "error": str(failure.error)})
            return
        logger.warning("key could not be refreshed", extra={"key": failure.key, "error": str(failure.error)})
        for listener in list(self._error_listeners):
            try:
                result = listener(failure)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                logger.exception("error listener failed", extra={"key": failure.key, "error": str(exc)})

    # ------------------------------------------------------------------
    # Read/write surface
    def get(self, key: Hashable, default: Any = None) -> Any:
        """Cached value (fresh or stale), else the static default.

        Unhashable keys can never be stored, so they read as ``default``.
        """

        try:
            if key in self._cache:
                return self._cache.get(key)
            return self._static.get(key, default)
        except TypeError:
            return default

    def set(self, key: Hashable, value: Any, ttl: Optional[float] = None) -> None:
        """Write ``value`` directly, bypassing resolvers."""

        self._write(key, value, ttl)

    def state(self, key: Hashable) -> KeyState:
        if key in self._states:
            return self._states[key]
        if key not in self._cache:
            return KeyState.UNRESOLVED
        if self._cache.is_stale(key):
            return KeyState.STALE_RESOLVING
        return KeyState.RESOLVED

    def is_stale(self, key: Hashable) -> bool:
        return self._cache.is_stale(key)

    def snapshot(self) -> Dict[Hashable, Any]:
        """Static config merged with cached values; cached values win."""

        return {**self._static, **self._cache.mget(self._cache.keys())}

    to_dict = snapshot

    def to_json(self, **kwargs: Any) -> str:
        kwargs.setdefault("default", str)
        return json.dumps(self.snapshot(), **kwargs)

    def __contains__(self, key: object) -> bool:
        return key in self._cache or key in self._static

    # ------------------------------------------------------------------
    # Lifecycle
    async def shutdown(self) -> None:
        """Stop expiry scanning and wait for running background refreshes."""

        await self._cache.close()
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def __aenter__(self) -> "ConfigStore":
        await self.init()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.shutdown()

    def __repr__(self) -> str:
        return (
            f"ConfigStore(keys={len(self._registry)}, spread={len(self._spread)}, "
            f"cached={len(self._cache)}, default_ttl={self.default_ttl})"
        )


__all__ = ["ConfigStore", "KeyState", "RefreshFailure", "ErrorListener"]
