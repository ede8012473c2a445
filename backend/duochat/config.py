"""duochat application configuration.

Loads settings from two YAML files:
  * duochat.settings.yaml  — non-secret configuration
  * duochat.secrets.yaml   — secrets (never committed)

Both files are optional; every setting has a default so the server starts
with an in-memory room store when nothing is configured.
"""
from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path(os.environ.get("DUOCHAT_SETTINGS", "duochat.settings.yaml"))
SECRETS_FILE  = Path(os.environ.get("DUOCHAT_SECRETS", "duochat.secrets.yaml"))


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Secrets models
# ---------------------------------------------------------------------------


class DatabaseSecrets(BaseModel):
    url: Optional[str] = None


class Secrets(BaseModel):
    database: DatabaseSecrets = Field(default_factory=DatabaseSecrets)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str  = "0.0.0.0"
    port:            int  = 4000
    debug:           bool = False
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])


class StorageSettings(BaseModel):
    """Where rooms, messages and accounts are persisted."""
    backend:          Literal["memory", "duckdb"] = "memory"
    db_path:          str   = "duochat.duckdb"
    accounts_db_path: str   = "accounts.duckdb"
    timeout_seconds: float = 5.0

    @field_validator("timeout_seconds")
    @classmethod
    def _positive_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("timeout_seconds must be positive")
        return value


class DeliverySettings(BaseModel):
    send_timeout_seconds: float = 5.0
    max_text_length:      int   = 10_000


class FileSettings(BaseModel):
    upload_dir:     str = "uploads"
    db_path:        str = "file_metadata.duckdb"
    max_size_bytes: int = 1024 * 1024 * 1024  # 1GB
    public_base_url: str = ""


class LoggingSettings(BaseModel):
    level: str = "info"


class AppSettings(BaseModel):
    server:   ServerSettings   = Field(default_factory=ServerSettings)
    storage:  StorageSettings  = Field(default_factory=StorageSettings)
    delivery: DeliverySettings = Field(default_factory=DeliverySettings)
    files:    FileSettings     = Field(default_factory=FileSettings)
    logging:  LoggingSettings  = Field(default_factory=LoggingSettings)
    secrets:  Secrets          = Field(default_factory=Secrets)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_settings(
    settings_file: Optional[Path] = None,
    secrets_file: Optional[Path] = None,
) -> AppSettings:
    """Load and merge settings + secrets into a single *AppSettings* object."""
    settings_data = _load_yaml(settings_file or SETTINGS_FILE)
    secrets_data  = _load_yaml(secrets_file or SECRETS_FILE)

    # Merge: secrets live under the "secrets" key in AppSettings
    settings_data["secrets"] = secrets_data

    app_settings = AppSettings(**settings_data)
    logger.info(
        "Settings loaded (server=%s:%s, storage.backend=%s, storage.timeout=%ss)",
        app_settings.server.host,
        app_settings.server.port,
        app_settings.storage.backend,
        app_settings.storage.timeout_seconds,
    )
    return app_settings


@lru_cache(maxsize=1)
def get_config() -> AppSettings:
    """Return the process-wide settings, loading them on first use."""
    return load_settings()


def reset_config() -> None:
    """Forget cached settings (used by tests)."""
    get_config.cache_clear()
