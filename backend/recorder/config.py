"""Recorder service configuration.

Loads settings from two YAML files:
  * recorder.settings.yaml: non-secret configuration
  * recorder.secrets.yaml: secrets (never committed)

The settings file location can be overridden with ``RECORDER_SETTINGS_PATH``.
Relative media paths are resolved against the directory holding the settings
file so the service behaves the same regardless of the working directory.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import BaseModel, Field, field_validator

from recorder.uploads.schemas import sanitize_text

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("recorder.settings.yaml")
SECRETS_FILE  = Path("recorder.secrets.yaml")
SETTINGS_ENV_VAR = "RECORDER_SETTINGS_PATH"

DEFAULT_MAX_MB      = 25
DEFAULT_MAX_SECONDS = 300
DEFAULT_HINT_TEXT   = "Chrome recommended. Keep recordings reasonably short."


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


def _resolve_path(value: Optional[str], base_dir: Path) -> Optional[str]:
    if not value:
        return value
    path = Path(value).expanduser()
    if path.is_absolute():
        return str(path)
    return str(base_dir / path)


# ---------------------------------------------------------------------------
# Secrets models
# ---------------------------------------------------------------------------


class AwsSecrets(BaseModel):
    access_key_id:     Optional[str] = None
    secret_access_key: Optional[str] = None
    session_token:     Optional[str] = None


class NonceSecrets(BaseModel):
    secret_key: str = "change-me-in-production"


class Secrets(BaseModel):
    aws:   AwsSecrets   = Field(default_factory=AwsSecrets)
    nonce: NonceSecrets = Field(default_factory=NonceSecrets)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str           = "0.0.0.0"
    port:            int           = 8000
    public_base_url: Optional[str] = None

    @property
    def base_url(self) -> str:
        """Externally visible base URL used to build media locators."""
        if self.public_base_url:
            return self.public_base_url.rstrip("/")
        host = "localhost" if self.host in ("0.0.0.0", "") else self.host
        return f"http://{host}:{self.port}"


class LoggingSettings(BaseModel):
    level: str = "info"


class UploadSettings(BaseModel):
    """Limits and UI hints for the recorder upload endpoint.

    ``max_mb`` is stored in megabytes and exposed in bytes through
    :attr:`max_bytes`. Negative values are taken as absolute; zero falls back to the default.
    """
    max_mb:      int           = DEFAULT_MAX_MB
    max_seconds: int           = DEFAULT_MAX_SECONDS
    hint_text:   str           = DEFAULT_HINT_TEXT
    temp_dir:    Optional[str] = None

    @field_validator("max_mb", mode="before")
    @classmethod
    def _sanitize_max_mb(cls, value: Any) -> int:
        try:
            mb = abs(int(value))
        except (TypeError, ValueError):
            return DEFAULT_MAX_MB
        return mb if mb > 0 else DEFAULT_MAX_MB

    @field_validator("max_seconds", mode="before")
    @classmethod
    def _sanitize_max_seconds(cls, value: Any) -> int:
        try:
            seconds = int(value)
        except (TypeError, ValueError):
            return DEFAULT_MAX_SECONDS
        return seconds if seconds > 0 else DEFAULT_MAX_SECONDS

    @field_validator("hint_text", mode="before")
    @classmethod
    def _sanitize_hint_text(cls, value: Any) -> str:
        text = sanitize_text(value) if isinstance(value, str) else ""
        return text or DEFAULT_HINT_TEXT

    @property
    def max_bytes(self) -> int:
        return self.max_mb * 1024 * 1024


class MediaSettings(BaseModel):
    """Default storage backend: files on disk, metadata in DuckDB."""
    storage_dir: str = "media"
    db_path:     str = "media_library.duckdb"


class AuthSettings(BaseModel):
    nonce_lifetime_seconds: int = 86400


class S3Settings(BaseModel):
    """Optional external storage handler backed by an S3 bucket.

    The handler only claims uploads whose ``requested_storage`` context value
    equals ``claim``; everything else falls through to the media library.
    """
    enabled:         bool          = False
    bucket:          str           = ""
    prefix:          str           = "recordings"
    region:          str           = "us-east-1"
    public_base_url: Optional[str] = None
    claim:           str           = "s3"


class AppConfig(BaseModel):
    server:  ServerSettings  = Field(default_factory=ServerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    uploads: UploadSettings  = Field(default_factory=UploadSettings)
    media:   MediaSettings   = Field(default_factory=MediaSettings)
    auth:    AuthSettings    = Field(default_factory=AuthSettings)
    s3:      S3Settings      = Field(default_factory=S3Settings)
    secrets: Secrets         = Field(default_factory=Secrets)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_config(
    settings_path: Optional[Union[str, Path]] = None,
    secrets_path: Optional[Union[str, Path]] = None,
) -> AppConfig:
    """Load and merge settings + secrets into a single *AppConfig* object.

    Args:
        settings_path: Settings YAML. Defaults to ``$RECORDER_SETTINGS_PATH``
            or ``recorder.settings.yaml`` in the working directory.
        secrets_path: Secrets YAML. Defaults to ``recorder.secrets.yaml`` next
            to the settings file.
    """
    if settings_path is None:
        settings_path = os.environ.get(SETTINGS_ENV_VAR) or SETTINGS_FILE
    settings_path = Path(settings_path)
    if secrets_path is None:
        secrets_path = settings_path.parent / SECRETS_FILE.name
    secrets_path = Path(secrets_path)

    settings_data = _load_yaml(settings_path)
    secrets_data  = _load_yaml(secrets_path)

    # Merge: secrets live under the "secrets" key in AppConfig
    settings_data["secrets"] = secrets_data

    config = AppConfig(**settings_data)

    base_dir = settings_path.resolve().parent
    config.media.storage_dir = _resolve_path(config.media.storage_dir, base_dir)
    config.media.db_path     = _resolve_path(config.media.db_path, base_dir)
    config.uploads.temp_dir  = _resolve_path(config.uploads.temp_dir, base_dir)

    logger.info(
        "Settings loaded (server=%s:%s, max_bytes=%d, s3.enabled=%s)",
        config.server.host,
        config.server.port,
        config.uploads.max_bytes,
        config.s3.enabled,
    )
    return config


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Return the process-wide configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: AppConfig) -> None:
    """Set (or replace) the process-wide configuration."""
    global _config
    _config = config


def reset_config() -> None:
    """Forget the cached configuration (for testing)."""
    global _config
    _config = None
