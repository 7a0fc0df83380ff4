"""Whirl client configuration.

Loads non-secret settings from ``whirl.settings.yaml``. Every section has
defaults, so a missing file yields a working configuration pointed at a
local development server.

Sections:
  * server     : API base URL, WebSocket and health paths
  * liveness   : delay and timeout of the post-disconnect health probe
  * friend_chat: history page size and the optimistic "sent" delay
  * storage    : location of the local DuckDB store
  * logging    : root log level
"""
from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("whirl.settings.yaml")


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
    api_base_url: str   = "http://localhost:8080"
    ws_path:      str   = "/websocket/connect"
    health_path:  str   = "/health"
    open_timeout: float = 10.0

    @field_validator("api_base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def ws_base_url(self) -> str:
        """WebSocket flavour of the API base URL (http -> ws, https -> wss)."""
        if self.api_base_url.startswith("http"):
            return "ws" + self.api_base_url[len("http"):]
        return self.api_base_url


class LivenessSettings(BaseModel):
    """Health probe fired after an abnormal socket close."""
    probe_delay_seconds:   float = 1.0
    probe_timeout_seconds: float = 2.0


class FriendChatSettings(BaseModel):
    page_size:          int   = Field(default=10, ge=1)
    sent_delay_seconds: float = 0.5


class StorageSettings(BaseModel):
    path: str = "whirl_local.duckdb"


class LoggingSettings(BaseModel):
    level: str = "info"


class WhirlConfig(BaseModel):
    server:      ServerSettings     = Field(default_factory=ServerSettings)
    liveness:    LivenessSettings   = Field(default_factory=LivenessSettings)
    friend_chat: FriendChatSettings = Field(default_factory=FriendChatSettings)
    storage:     StorageSettings    = Field(default_factory=StorageSettings)
    logging:     LoggingSettings    = Field(default_factory=LoggingSettings)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def _resolve_storage_path(raw_path: str, settings_path: Path) -> str:
    """Resolve a relative storage path against the settings file directory."""
    if raw_path == ":memory:":
        return raw_path
    path = Path(raw_path).expanduser()
    if path.is_absolute():
        return str(path)
    return str(settings_path.resolve().parent / path)


def load_config(settings_path: Optional[Path] = None) -> WhirlConfig:
    """Load ``whirl.settings.yaml`` into a *WhirlConfig* object."""
    path = Path(settings_path) if settings_path is not None else SETTINGS_FILE
    data = _load_yaml(path)

    config = WhirlConfig(**data)
    config.storage.path = _resolve_storage_path(config.storage.path, path)
    logger.info(
        "Settings loaded (api=%s, page_size=%s, storage=%s)",
        config.server.api_base_url,
        config.friend_chat.page_size,
        config.storage.path,
    )
    return config


@lru_cache(maxsize=1)
def get_config() -> WhirlConfig:
    """Process-wide configuration loaded from the default settings file."""
    return load_config()
