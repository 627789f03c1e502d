"""Self-refreshing in-process configuration store."""

from __future__ import annotations

from refreshstore.core.coalesce import CoalescedResolver
from refreshstore.core.config import StoreSettings, load_settings
from refreshstore.core.expiring_cache import ExpiringCache
from refreshstore.core.registry import ResolverBinding, ResolverRegistry
from refreshstore.core.retry import RetryPolicy
from refreshstore.core.store import ConfigStore, KeyState, RefreshFailure
from refreshstore.utils.errors import ConfigurationError, RefreshStoreError, ResolutionError

__version__ = "0.1.0"

__all__ = [
    "CoalescedResolver",
    "ConfigStore",
    "ConfigurationError",
    "ExpiringCache",
    "KeyState",
    "RefreshFailure",
    "RefreshStoreError",
    "ResolutionError",
    "ResolverBinding",
    "ResolverRegistry",
    "RetryPolicy",
    "StoreSettings",
    "load_settings",
]
