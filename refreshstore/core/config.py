"""Store settings.

Tunables and static defaults can be kept in a YAML (or TOML) file and
validated with Pydantic before a :class:`~refreshstore.core.store.ConfigStore`
is built from them. Resolvers are code and are always passed in separately.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from refreshstore.utils.errors import ConfigurationError
from refreshstore.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_KEY_TTL = 600.0
DEFAULT_KEY_REFRESH_RETRIES = 10


class StoreSettings(BaseModel):
    """Validated construction options for a store."""

    model_config = ConfigDict(extra="forbid")

    static: Dict[str, Any] = Field(default_factory=dict, description="Static fallback values")
    default_ttl: float = Field(default=DEFAULT_KEY_TTL, gt=0, description="Seconds")
    key_check_period: Optional[float] = Field(default=None, gt=0, description="Seconds")
    key_refresh_retries: int = Field(default=DEFAULT_KEY_REFRESH_RETRIES, ge=0)
    debounce_window: float = Field(default=1.0, ge=0, description="Seconds")
    retry_delay: float = Field(default=0.1, ge=0, description="Seconds")
    retry_backoff: float = Field(default=2.0, ge=1)
    retry_max_delay: float = Field(default=30.0, ge=0, description="Seconds")

    @field_validator("static")
    @classmethod
    def validate_static_keys(cls, value: Dict[str, Any]) -> Dict[str, Any]:
        for key in value:
            if not isinstance(key, str):
                raise ValueError(f"static keys must be strings, got {key!r}")
        return value

    @property
    def check_period(self) -> float:
        return self.key_check_period or self.default_ttl / 3

    def store_options(self) -> Dict[str, Any]:
        """Keyword arguments accepted by ``ConfigStore``."""

        return {
            "static_config": dict(self.static),
            "default_ttl": self.default_ttl,
            "key_check_period": self.key_check_period,
            "key_refresh_retries": self.key_refresh_retries,
            "debounce_window": self.debounce_window,
            "retry_delay": self.retry_delay,
            "retry_backoff": self.retry_backoff,
            "retry_max_delay": self.retry_max_delay,
        }


def validate_settings(**options: Any) -> StoreSettings:
    """Validate options, converting Pydantic failures into ``ConfigurationError``."""

    try:
        return StoreSettings(**options)
    except ValidationError as exc:
        raise ConfigurationError(str(exc)) from exc


def load_settings(path: Optional[Path] = None) -> StoreSettings:
    """Load settings from ``path`` or ``$REFRESHSTORE_CONFIG``."""

    if path is None:
        env_path = os.environ.get("REFRESHSTORE_CONFIG")
        if not env_path:
            raise ConfigurationError("no settings path given and REFRESHSTORE_CONFIG is not set")
        path = Path(env_path)
    path = Path(path)
    logger.debug("loading settings", extra={"event": str(path)})
    data = _read_file(path)
    if not isinstance(data, dict):
        raise ConfigurationError(f"settings file {path} must contain a mapping")
    return validate_settings(**data)


def _read_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigurationError(f"Settings file {path} does not exist")
    if path.suffix in {".yml", ".yaml"}:
        with path.open("r", encoding="utf-8") as handle:
            try:
                return yaml.safe_load(handle) or {}
            except yaml.YAMLError as exc:
                raise ConfigurationError(f"Invalid YAML in {path}: {exc}") from exc
    if path.suffix == ".toml":
        import tomllib

        with path.open("rb") as handle:
            try:
                return tomllib.load(handle)
            except tomllib.TOMLDecodeError as exc:
                raise ConfigurationError(f"Invalid TOML in {path}: {exc}") from exc
    raise ConfigurationError(f"Unsupported settings format: {path.suffix}")


__all__ = [
    "StoreSettings",
    "load_settings",
    "validate_settings",
    "DEFAULT_KEY_TTL",
    "DEFAULT_KEY_REFRESH_RETRIES",
]
