"""Resolver registry.

Resolver definitions arrive in two shapes: a bare callable, or a mapping with a
``resolver`` and optional ``mapper`` and ``ttl``. :class:`ResolverRegistry`
turns both into :class:`ResolverBinding` records once, at construction, and
keeps one :class:`~refreshstore.core.coalesce.CoalescedResolver` per distinct
resolver function so keys backed by the same function share upstream calls.
"""
from __future__ import annotations

from dataclasses import dataclass
from numbers import Real
from typing import Any, Callable, Dict, Hashable, Iterator, Mapping, Optional

from refreshstore.core.coalesce import DEFAULT_WINDOW, CoalescedResolver
from refreshstore.utils.errors import ConfigurationError
from refreshstore.utils.logging import get_logger

logger = get_logger(__name__)

Resolver = Callable[[], Any]
Mapper = Callable[[Any, Any], Any]

_BINDING_FIELDS = frozenset({"resolver", "mapper", "ttl"})


@dataclass(frozen=True)
class ResolverBinding:
    """How a single key is resolved.

    ``ttl`` of ``None`` means the store default applies; ``0`` is a real
    override meaning the value never expires.
    """

    resolver: Resolver
    mapper: Optional[Mapper] = None
    ttl: Optional[float] = None

    def apply(self, raw: Any, store: Any) -> Any:
        if self.mapper is None:
            return raw
        return self.mapper(raw, store)


def _validate_ttl(key: Hashable, ttl: Any) -> Optional[float]:
    if ttl is None:
        return None
    if isinstance(ttl, bool) or not isinstance(ttl, Real):
        raise ConfigurationError(f"ttl for {key!r} must be a number, got {type(ttl).__name__}")
    if ttl < 0:
        raise ConfigurationError(f"ttl for {key!r} must be non-negative")
    return float(ttl)


def normalize_binding(key: Hashable, definition: Any) -> ResolverBinding:
    """Turn one user-supplied definition into a :class:`ResolverBinding`."""

    if isinstance(definition, ResolverBinding):
        resolver, mapper, ttl = definition.resolver, definition.mapper, definition.ttl
    elif isinstance(definition, Mapping):
        unknown = set(definition) - _BINDING_FIELDS
        if unknown:
            raise ConfigurationError(
                f"unknown fields for {key!r}: {', '.join(sorted(map(str, unknown)))}"
            )
        if "resolver" not in definition:
            raise ConfigurationError(f"resolver definition for {key!r} has no 'resolver'")
        resolver = definition["resolver"]
        mapper = definition.get("mapper")
        ttl = definition.get("ttl")
    elif callable(definition):
        resolver, mapper, ttl = definition, None, None
    else:
        raise ConfigurationError(
            f"resolver definition for {key!r} must be callable or a mapping, "
            f"got {type(definition).__name__}"
        )

    if not callable(resolver):
        raise ConfigurationError(f"resolver for {key!r} is not callable")
    if mapper is not None and not callable(mapper):
        raise ConfigurationError(f"mapper for {key!r} is not callable")
    return ResolverBinding(resolver=resolver, mapper=mapper, ttl=_validate_ttl(key, ttl))


class ResolverRegistry:
    """Normalised key → binding mapping with shared coalesced resolvers."""

    def __init__(
        self,
        config_resolvers: Optional[Mapping[str, Any]] = None,
        *,
        window: float = DEFAULT_WINDOW,
    ) -> None:
        if config_resolvers is not None and not isinstance(config_resolvers, Mapping):
            raise ConfigurationError("config_resolvers must be a mapping")
        self.window = window
        self._bindings: Dict[str, ResolverBinding] = {}
        self._coalesced: Dict[Resolver, CoalescedResolver] = {}
        for key, definition in (config_resolvers or {}).items():
            if not isinstance(key, str):
                raise ConfigurationError(f"resolver keys must be strings, got {key!r}")
            binding = normalize_binding(key, definition)
            self._bindings[key] = binding
            self.coalesced(binding.resolver)
        logger.debug(
            "resolver registry built: %d keys, %d resolvers",
            len(self._bindings),
            len(self._coalesced),
        )

    def coalesced(self, resolver: Resolver) -> CoalescedResolver:
        """Return the shared coalesced wrapper for ``resolver``."""

        wrapper = self._coalesced.get(resolver)
        if wrapper is None:
            wrapper = CoalescedResolver(resolver, window=self.window)
            self._coalesced[resolver] = wrapper
        return wrapper

    def binding(self, key: str) -> ResolverBinding:
        return self._bindings[key]

    def __contains__(self, key: object) -> bool:
        return key in self._bindings

    def __iter__(self) -> Iterator[str]:
        return iter(self._bindings)

    def __len__(self) -> int:
        return len(self._bindings)

    def keys(self):
        return self._bindings.keys()

    @property
    def resolver_count(self) -> int:
        return len(self._coalesced)


__all__ = ["ResolverBinding", "ResolverRegistry", "normalize_binding", "Resolver", "Mapper"]
