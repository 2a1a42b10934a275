"""chatgate application configuration.

Settings are read from an optional YAML file (``chatgate.settings.yaml``) and
then overridden by environment variables, which is how deployments supply the
passcode and the store address:

  * SECRET_CODE: shared passcode for the ``join`` event
  * STORE_URL: DuckDB database path (``:memory:`` is accepted)
  * LOG_LEVEL: root logger level
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("chatgate.settings.yaml")

DEFAULT_SECRET_CODE = "default_password"


class ConfigError(RuntimeError):
    """Raised when a required setting is missing at startup."""


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.debug("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8000


class AuthSettings(BaseModel):
    secret_code: str = DEFAULT_SECRET_CODE


class StoreSettings(BaseModel):
    """Where messages live and how often expired ones are swept."""
    url:                    Optional[str] = None
    sweep_interval_seconds: int           = Field(default=60, ge=1)


class ChatSettings(BaseModel):
    history_limit:       int   = Field(default=50, ge=1)
    ephemeral_ttl_hours: float = Field(default=24, gt=0)


class LoggingSettings(BaseModel):
    level: str = "info"

    @field_validator("level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        if not isinstance(getattr(logging, value.upper(), None), int):
            raise ValueError(f"Unknown log level: {value}")
        return value.lower()


class AppConfig(BaseModel):
    server:  ServerSettings  = Field(default_factory=ServerSettings)
    auth:    AuthSettings    = Field(default_factory=AuthSettings)
    store:   StoreSettings   = Field(default_factory=StoreSettings)
    chat:    ChatSettings    = Field(default_factory=ChatSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    def require_store_url(self) -> str:
        """Return the store address, or raise if none was configured."""
        if not self.store.url:
            raise ConfigError(
                "No message store configured: set STORE_URL or store.url"
            )
        return self.store.url

    @property
    def uses_default_secret(self) -> bool:
        return self.auth.secret_code == DEFAULT_SECRET_CODE


# ---------------------------------------------------------------------------
# Environment overrides
# ---------------------------------------------------------------------------


def _apply_env_overrides(data: Dict[str, Any]) -> Dict[str, Any]:
    env_map = {
        "SECRET_CODE": ("auth", "secret_code"),
        "STORE_URL":   ("store", "url"),
        "LOG_LEVEL":   ("logging", "level"),
    }
    for env_name, (section, key) in env_map.items():
        value = os.environ.get(env_name)
        if value:
            data.setdefault(section, {})
            data[section][key] = value
    return data


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------

_config: Optional[AppConfig] = None


def load_config(settings_path: Optional[Path] = None) -> AppConfig:
    """Load settings from YAML and the environment into an *AppConfig*."""
    data = _load_yaml(Path(settings_path) if settings_path else SETTINGS_FILE)
    config = AppConfig(**_apply_env_overrides(data))
    if config.uses_default_secret:
        logger.warning(
            "SECRET_CODE not set; falling back to the insecure default passcode"
        )
    logger.info(
        "Config loaded (server=%s:%s, store=%s)",
        config.server.host,
        config.server.port,
        config.store.url or "<unset>",
    )
    return config


def get_config() -> AppConfig:
    """Return the process-wide config, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """Forget the cached config so the next ``get_config`` reloads it."""
    global _config
    _config = None
