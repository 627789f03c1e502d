"""Custom exceptions raised by refreshstore."""
from __future__ import annotations

from typing import Hashable, Optional


class RefreshStoreError(Exception):
    """Base exception for all store-specific errors."""


class ConfigurationError(RefreshStoreError):
    """Raised when store options or resolver definitions are malformed."""


class ResolutionError(RefreshStoreError):
    """Raised when a key could not be resolved.

    The final underlying failure is chained as ``__cause__``.
    """

    def __init__(self, message: str, *, key: Optional[Hashable] = None) -> None:
        super().__init__(message)
        self.key = key


__all__ = [
    "RefreshStoreError",
    "ConfigurationError",
    "ResolutionError",
]
