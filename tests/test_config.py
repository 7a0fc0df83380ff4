"""Tests for the settings models and the YAML loader.

Covers:
* ServerSettings   – defaults, trailing slash, ws/wss derivation
* FriendChatSettings – page size validation
* load_config      – missing file, partial file, storage path resolution
"""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from whirl.config import FriendChatSettings, ServerSettings, WhirlConfig, get_config, load_config

# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class TestServerSettings:
    def test_defaults(self):
        cfg = ServerSettings()
        assert cfg.api_base_url == "http://localhost:8080"
        assert cfg.ws_path == "/websocket/connect"
        assert cfg.ws_base_url == "ws://localhost:8080"

    def test_trailing_slash_is_stripped(self):
        cfg = ServerSettings(api_base_url="https://chat.example.com/")
        assert cfg.api_base_url == "https://chat.example.com"

    def test_https_maps_to_wss(self):
        cfg = ServerSettings(api_base_url="https://chat.example.com")
        assert cfg.ws_base_url == "wss://chat.example.com"


class TestFriendChatSettings:
    def test_default_page_size(self):
        assert FriendChatSettings().page_size == 10

    def test_page_size_must_be_positive(self):
        with pytest.raises(ValidationError):
            FriendChatSettings(page_size=0)


class TestWhirlConfig:
    def test_all_sections_have_defaults(self):
        cfg = WhirlConfig()
        assert cfg.liveness.probe_delay_seconds == 1.0
        assert cfg.liveness.probe_timeout_seconds == 2.0
        assert cfg.friend_chat.sent_delay_seconds == 0.5
        assert cfg.logging.level == "info"


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------


class TestLoadConfig:
    def test_missing_file_yields_defaults(self, tmp_path: Path):
        cfg = load_config(tmp_path / "absent.yaml")
        assert cfg.server.api_base_url == "http://localhost:8080"
        assert cfg.storage.path == str(tmp_path.resolve() / "whirl_local.duckdb")

    def test_partial_file_overrides_only_given_keys(self, tmp_path: Path):
        settings = tmp_path / "whirl.settings.yaml"
        settings.write_text(
            "server:\n"
            "  api_base_url: http://10.0.0.5:9000/\n"
            "friend_chat:\n"
            "  page_size: 25\n",
            encoding="utf-8",
        )

        cfg = load_config(settings)

        assert cfg.server.api_base_url == "http://10.0.0.5:9000"
        assert cfg.server.health_path == "/health"
        assert cfg.friend_chat.page_size == 25
        assert cfg.friend_chat.sent_delay_seconds == 0.5

    def test_empty_file(self, tmp_path: Path):
        settings = tmp_path / "whirl.settings.yaml"
        settings.write_text("", encoding="utf-8")
        assert load_config(settings).friend_chat.page_size == 10

    def test_memory_storage_is_kept(self, tmp_path: Path):
        settings = tmp_path / "whirl.settings.yaml"
        settings.write_text('storage:\n  path: ":memory:"\n', encoding="utf-8")
        assert load_config(settings).storage.path == ":memory:"

    def test_get_config_is_cached(self, tmp_path: Path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        get_config.cache_clear()
        try:
            assert get_config() is get_config()
        finally:
            get_config.cache_clear()

    def test_absolute_storage_path_is_kept(self, tmp_path: Path):
        target = tmp_path / "data" / "store.duckdb"
        settings = tmp_path / "whirl.settings.yaml"
        settings.write_text(f'storage:\n  path: "{target}"\n', encoding="utf-8")
        assert load_config(settings).storage.path == str(target)
