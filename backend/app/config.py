"""Neon Chat application configuration.

Loads settings from two YAML files:
  * neon.settings.yaml: non-secret configuration
  * neon.secrets.yaml: secrets (never committed)

The JWT signing key may also be supplied through the ``NEON_JWT_SECRET``
environment variable, which wins over the secrets file.
"""
from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("neon.settings.yaml")
SECRETS_FILE  = Path("neon.secrets.yaml")

JWT_SECRET_ENV = "NEON_JWT_SECRET"


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Secrets models
# ---------------------------------------------------------------------------


class JWTSecrets(BaseModel):
    secret_key: str = "change-me-in-production"


class Secrets(BaseModel):
    jwt: JWTSecrets = Field(default_factory=JWTSecrets)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str       = "0.0.0.0"
    port:            int       = 5000
    allowed_origins: List[str] = Field(default_factory=lambda: ["http://localhost:8081"])


class LoggingSettings(BaseModel):
    level: str = "info"


class DatabaseSettings(BaseModel):
    path: str = "neon.duckdb"


class AuthSettings(BaseModel):
    token_expire_days: int = 7
    algorithm:         str = "HS256"
    issuer:            str = "neon-chat"


class RoomSettings(BaseModel):
    default_max_users: int = Field(default=100, ge=2, le=500)
    list_limit:        int = 50


class MessageSettings(BaseModel):
    max_length:        int = 500
    default_page_size: int = 50
    max_page_size:     int = 100


class AppSettings(BaseModel):
    server:   ServerSettings   = Field(default_factory=ServerSettings)
    logging:  LoggingSettings  = Field(default_factory=LoggingSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    auth:     AuthSettings     = Field(default_factory=AuthSettings)
    rooms:    RoomSettings     = Field(default_factory=RoomSettings)
    messages: MessageSettings  = Field(default_factory=MessageSettings)
    secrets:  Secrets          = Field(default_factory=Secrets)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_settings(
    settings_file: Path = SETTINGS_FILE,
    secrets_file: Path = SECRETS_FILE,
) -> AppSettings:
    """Load and merge settings + secrets into a single *AppSettings* object."""
    settings_data = _load_yaml(settings_file)
    secrets_data  = _load_yaml(secrets_file)

    # Merge: secrets live under the "secrets" key in AppSettings
    settings_data["secrets"] = secrets_data

    env_secret = os.environ.get(JWT_SECRET_ENV)
    if env_secret:
        settings_data["secrets"].setdefault("jwt", {})["secret_key"] = env_secret
        logger.info("JWT secret taken from %s", JWT_SECRET_ENV)

    app_settings = AppSettings(**settings_data)
    if app_settings.secrets.jwt.secret_key == JWTSecrets().secret_key:
        logger.warning("Using the default JWT secret; set one in %s", secrets_file)

    logger.info(
        "Settings loaded (server=%s:%s, database=%s, token_expire_days=%s)",
        app_settings.server.host,
        app_settings.server.port,
        app_settings.database.path,
        app_settings.auth.token_expire_days,
    )
    return app_settings


@lru_cache(maxsize=1)
def get_config() -> AppSettings:
    """Return the process-wide settings, loading them on first use."""
    return load_settings()
