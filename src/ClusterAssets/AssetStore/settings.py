"""Configuration models and environment overrides for the asset store.

Settings are expressed as Pydantic models so values are validated on
construction and assignment.  :class:`AssetStoreSettings` reads overrides from
``CLUSTER_ASSETS_*`` environment variables, with ``__`` separating nested
sections (for example ``CLUSTER_ASSETS_DOWNLOAD__MAX_RETRIES=2``).
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Optional

import platformdirs
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError

__all__ = [
    "DEFAULT_CACHE_DIR",
    "AssetStoreSettings",
    "DownloadConfiguration",
    "ExtractionConfiguration",
    "LoggingConfiguration",
    "get_default_settings",
    "reset_default_settings",
]

DEFAULT_CACHE_DIR = Path(platformdirs.user_cache_dir("cluster-assets"))

_DEFAULT_SETTINGS: Optional["AssetStoreSettings"] = None
_DEFAULT_SETTINGS_LOCK = threading.Lock()


class LoggingConfiguration(BaseModel):
    """Logging-related configuration for asset registration."""

    level: str = Field(default="INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR)")
    log_dir: Optional[Path] = Field(
        default=None,
        description="Directory receiving JSON-lines logs; console only when unset",
    )
    max_log_size_mb: int = Field(default=100, gt=0, description="Maximum size of rotated log files")

    @field_validator("level")
    @classmethod
    def validate_level(cls, value: str) -> str:
        """Normalise logging levels and ensure they match the supported set."""

        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR"}
        upper = value.upper()
        if upper not in valid_levels:
            raise ValueError(f"level must be one of {sorted(valid_levels)}")
        return upper

    model_config = {"validate_assignment": True}


class DownloadConfiguration(BaseModel):
    """HTTP transport settings used for hash discovery and downloads.

    Retries here apply to a single URL at the transport level.  Falling back to
    the next mirror is the store's concern and is not affected by these values.
    """

    timeout_sec: float = Field(default=30.0, gt=0.0, le=3600.0)
    connect_timeout_sec: float = Field(default=5.0, gt=0.0, le=60.0)
    max_retries: int = Field(default=3, ge=0, le=20)
    backoff_factor: float = Field(default=0.5, ge=0.0, le=10.0)
    chunk_size: int = Field(default=1 << 20, ge=1024)
    user_agent: str = Field(default="cluster-assets")
    http2_enabled: bool = Field(default=False)
    follow_redirects: bool = Field(default=True)

    model_config = {"validate_assignment": True, "extra": "ignore"}


class ExtractionConfiguration(BaseModel):
    """Settings for expanding cached archives."""

    tar_command: str = Field(default="tar", min_length=1)

    model_config = {"validate_assignment": True, "extra": "ignore"}


class AssetStoreSettings(BaseSettings):
    """Top-level settings for an asset store and its collaborators."""

    cache_dir: Path = Field(default=DEFAULT_CACHE_DIR)
    download: DownloadConfiguration = Field(default_factory=DownloadConfiguration)
    extraction: ExtractionConfiguration = Field(default_factory=ExtractionConfiguration)
    logging: LoggingConfiguration = Field(default_factory=LoggingConfiguration)

    model_config = SettingsConfigDict(
        env_prefix="CLUSTER_ASSETS_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
        validate_assignment=True,
    )


def get_default_settings(*, copy: bool = False) -> AssetStoreSettings:
    """Return memoised settings constructed from defaults and the environment."""

    global _DEFAULT_SETTINGS  # noqa: PLW0603

    with _DEFAULT_SETTINGS_LOCK:
        if _DEFAULT_SETTINGS is None:
            try:
                _DEFAULT_SETTINGS = AssetStoreSettings()
            except ValidationError as exc:
                raise ConfigurationError(f"invalid asset store settings: {exc}") from exc
        cached = _DEFAULT_SETTINGS
    if copy:
        return cached.model_copy(deep=True)
    return cached


def reset_default_settings() -> None:
    """Forget memoised settings so the next lookup re-reads the environment."""

    global _DEFAULT_SETTINGS  # noqa: PLW0603

    with _DEFAULT_SETTINGS_LOCK:
        _DEFAULT_SETTINGS = None
