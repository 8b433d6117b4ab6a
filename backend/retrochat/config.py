"""Retro Chat application configuration.

Loads settings from a single YAML file:
  * retrochat.settings.yaml  (path overridable with RETROCHAT_SETTINGS)

A few environment variables take precedence over the file so the server can
be configured on a PaaS without a settings file:
  * PORT, HOST
  * RETROCHAT_LOG_LEVEL
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("retrochat.settings.yaml")
SETTINGS_ENV_VAR = "RETROCHAT_SETTINGS"


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = Field(default=8080, ge=0, le=65535)


class ChatSettings(BaseModel):
    """Limits and defaults for the chat core."""
    max_message_length:  int = Field(default=500, ge=1)
    max_username_length: int = Field(default=20, ge=1)
    history_capacity:    int = Field(default=100, ge=1)
    join_history_limit:  int = Field(default=20, ge=0)
    fetch_history_limit: int = Field(default=50, ge=1)
    default_room_id:     str = "general"
    default_room_name:   str = "General"

    @model_validator(mode="after")
    def _limits_within_capacity(self) -> "ChatSettings":
        if self.join_history_limit > self.history_capacity:
            self.join_history_limit = self.history_capacity
        if self.fetch_history_limit > self.history_capacity:
            self.fetch_history_limit = self.history_capacity
        return self


class LoggingSettings(BaseModel):
    # Names uvicorn accepts for log_level
    level: Literal["critical", "error", "warning", "info", "debug", "trace"] = "info"

    @field_validator("level", mode="before")
    @classmethod
    def _lowercase_level(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value


class AppSettings(BaseModel):
    server:  ServerSettings  = Field(default_factory=ServerSettings)
    chat:    ChatSettings    = Field(default_factory=ChatSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


# ---------------------------------------------------------------------------
# Environment overrides
# ---------------------------------------------------------------------------


def _apply_env_overrides(data: Dict[str, Any]) -> Dict[str, Any]:
    server = dict(data.get("server") or {})
    if os.environ.get("PORT"):
        server["port"] = os.environ["PORT"]
    if os.environ.get("HOST"):
        server["host"] = os.environ["HOST"]
    data["server"] = server

    if os.environ.get("RETROCHAT_LOG_LEVEL"):
        log_cfg = dict(data.get("logging") or {})
        log_cfg["level"] = os.environ["RETROCHAT_LOG_LEVEL"]
        data["logging"] = log_cfg
    return data


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_config(settings_path: Optional[Path] = None) -> AppSettings:
    """Load settings from YAML, then apply environment overrides."""
    if settings_path is None:
        settings_path = Path(os.environ.get(SETTINGS_ENV_VAR, SETTINGS_FILE))
    data = _apply_env_overrides(_load_yaml(Path(settings_path)))

    settings = AppSettings(**data)
    logger.info(
        "Settings loaded (server=%s:%s, history_capacity=%d, max_message_length=%d)",
        settings.server.host,
        settings.server.port,
        settings.chat.history_capacity,
        settings.chat.max_message_length,
    )
    return settings


_config: Optional[AppSettings] = None


def get_config() -> AppSettings:
    """Return the process-wide settings, loading them on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """Forget cached settings (for testing)."""
    global _config
    _config = None
