"""
Unit tests for server configuration.

Tests cover:
- Defaults
- Environment loading
- Validation
- HTTP settings
"""

import pytest

from volthome.sync_server.api.settings import ApiSettings
from volthome.sync_server.config import (
    ObservabilityConfig,
    RateLimitConfig,
    ServerConfig,
    StorageConfig,
    SyncConfig,
)


class TestServerConfig:
    """Tests for ServerConfig."""

    def test_defaults(self):
        config = ServerConfig()
        assert config.storage.busy_timeout_ms == 5000
        assert config.storage.statement_timeout_ms == 8000
        assert config.sync.max_batch_items == 5000
        assert config.sync.default_group_name == "__default__"
        assert config.rate_limit.enabled is True

    def test_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("DATA_DIR", str(tmp_path))
        monkeypatch.setenv("SQLITE_WAL_MODE", "false")
        monkeypatch.setenv("SQLITE_STATEMENT_TIMEOUT_MS", "2500")
        monkeypatch.setenv("SYNC_MAX_BATCH_ITEMS", "10")
        monkeypatch.setenv("SYNC_DEFAULT_GROUP_NAME", "Unsorted")
        monkeypatch.setenv("RATE_LIMIT_ENABLED", "false")
        monkeypatch.setenv("LOG_LEVEL", "debug")
        monkeypatch.setenv("LOG_FORMAT", "TEXT")

        config = ServerConfig.from_env()

        assert config.storage.data_dir == str(tmp_path)
        assert config.storage.wal_mode is False
        assert config.storage.statement_timeout_ms == 2500
        assert config.sync.max_batch_items == 10
        assert config.sync.default_group_name == "Unsorted"
        assert config.rate_limit.enabled is False
        assert config.observability.log_level == "DEBUG"
        assert config.observability.log_format == "text"

    def test_from_env_validates(self, monkeypatch):
        monkeypatch.setenv("SQLITE_BUSY_TIMEOUT_MS", "0")
        with pytest.raises(ValueError, match="SQLITE_BUSY_TIMEOUT_MS"):
            ServerConfig.from_env()

    @pytest.mark.parametrize(
        "config",
        [
            ServerConfig(storage=StorageConfig(data_dir="")),
            ServerConfig(storage=StorageConfig(statement_timeout_ms=-1)),
            ServerConfig(sync=SyncConfig(max_batch_items=0)),
            ServerConfig(sync=SyncConfig(default_group_name="  ")),
            ServerConfig(rate_limit=RateLimitConfig(batch_per_minute=0)),
            ServerConfig(observability=ObservabilityConfig(log_level="LOUD")),
            ServerConfig(observability=ObservabilityConfig(log_format="xml")),
        ],
    )
    def test_invalid(self, config):
        with pytest.raises(ValueError):
            config.validate()

    def test_disabled_rate_limit_skips_limits(self, tmp_path):
        config = ServerConfig(
            storage=StorageConfig(data_dir=str(tmp_path)),
            rate_limit=RateLimitConfig(enabled=False, batch_per_minute=0),
        )
        config.validate()

    def test_configs_are_frozen(self):
        with pytest.raises(AttributeError):
            StorageConfig().data_dir = "/elsewhere"


class TestApiSettings:
    """Tests for ApiSettings."""

    def test_defaults(self):
        settings = ApiSettings()
        assert settings.port == 8080
        assert settings.user_header == "X-User-ID"

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("VOLTHOME_API_PORT", "9090")
        monkeypatch.setenv("VOLTHOME_API_USER_HEADER", "X-Auth-User")
        settings = ApiSettings()
        assert settings.port == 9090
        assert settings.user_header == "X-Auth-User"
