"""
Configuration management for the VoltHome sync server.

All configuration is done via environment variables - no config files inside containers.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Production deployments MUST set explicit values for DATA_DIR
    - Timeouts are positive; a zero timeout would fail every batch

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Deprecate settings by logging warnings but continuing to support them
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
_LOG_FORMATS = ("json", "text")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass(frozen=True)
class StorageConfig:
    """Local storage configuration.

    Attributes:
        data_dir: Directory for per-owner SQLite databases
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: How long a writer waits for the database lock
        statement_timeout_ms: Upper bound on one store operation
        cache_size_pages: SQLite cache size in pages (negative = KB)
    """

    data_dir: str = "./data"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000
    statement_timeout_ms: int = 8000
    cache_size_pages: int = -64000  # 64MB

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            data_dir=os.getenv("DATA_DIR", "./data"),
            wal_mode=_env_bool("SQLITE_WAL_MODE", "true"),
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
            statement_timeout_ms=int(os.getenv("SQLITE_STATEMENT_TIMEOUT_MS", "8000")),
            cache_size_pages=int(os.getenv("SQLITE_CACHE_SIZE", "-64000")),
        )


@dataclass(frozen=True)
class SyncConfig:
    """Batch application settings.

    Attributes:
        max_batch_items: Maximum upserts plus deletes in one batch
        default_group_name: Reserved name of a room's default group
    """

    max_batch_items: int = 5000
    default_group_name: str = "__default__"

    @classmethod
    def from_env(cls) -> SyncConfig:
        """Load configuration from environment variables."""
        return cls(
            max_batch_items=int(os.getenv("SYNC_MAX_BATCH_ITEMS", "5000")),
            default_group_name=os.getenv("SYNC_DEFAULT_GROUP_NAME", "__default__"),
        )


@dataclass(frozen=True)
class RateLimitConfig:
    """Per-user request rate limits.

    Attributes:
        enabled: Whether rate limiting is applied
        batch_per_minute: Batch submissions per user per minute
        read_per_minute: Read requests (list, meta, tree, delta) per user per minute
    """

    enabled: bool = True
    batch_per_minute: int = 60
    read_per_minute: int = 600

    @classmethod
    def from_env(cls) -> RateLimitConfig:
        """Load configuration from environment variables."""
        return cls(
            enabled=_env_bool("RATE_LIMIT_ENABLED", "true"),
            batch_per_minute=int(os.getenv("RATE_LIMIT_BATCH_PER_MIN", "60")),
            read_per_minute=int(os.getenv("RATE_LIMIT_READ_PER_MIN", "600")),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_format=os.getenv("LOG_FORMAT", "json").lower(),
        )


@dataclass
class ServerConfig:
    """Complete server configuration.

    This aggregates all configuration sections and provides validation.
    HTTP bind address and CORS live in api.settings.ApiSettings.

    Attributes:
        storage: Local storage configuration
        sync: Batch application configuration
        rate_limit: Rate limiter configuration
        observability: Observability configuration
    """

    storage: StorageConfig = field(default_factory=StorageConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Returns:
            ServerConfig with all sections populated from environment.

        Raises:
            ValueError: If configuration is missing or invalid.
        """
        config = cls(
            storage=StorageConfig.from_env(),
            sync=SyncConfig.from_env(),
            rate_limit=RateLimitConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not self.storage.data_dir:
            raise ValueError("DATA_DIR must not be empty")
        if self.storage.busy_timeout_ms <= 0:
            raise ValueError("SQLITE_BUSY_TIMEOUT_MS must be positive")
        if self.storage.statement_timeout_ms <= 0:
            raise ValueError("SQLITE_STATEMENT_TIMEOUT_MS must be positive")

        if self.sync.max_batch_items <= 0:
            raise ValueError("SYNC_MAX_BATCH_ITEMS must be positive")
        if not self.sync.default_group_name.strip():
            raise ValueError("SYNC_DEFAULT_GROUP_NAME must not be blank")

        if self.rate_limit.enabled and (
            self.rate_limit.batch_per_minute <= 0 or self.rate_limit.read_per_minute <= 0
        ):
            raise ValueError("Rate limits must be positive when RATE_LIMIT_ENABLED=true")

        if self.observability.log_level not in _LOG_LEVELS:
            raise ValueError(
                f"Invalid LOG_LEVEL '{self.observability.log_level}'. "
                f"Must be one of: {', '.join(_LOG_LEVELS)}"
            )
        if self.observability.log_format not in _LOG_FORMATS:
            raise ValueError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. Must be one of: json, text"
            )

        if not os.path.exists(self.storage.data_dir):
            logger.warning(
                f"Data directory does not exist: {self.storage.data_dir}. "
                "It will be created on first write."
            )

    def log_config(self) -> None:
        """Log configuration."""
        logger.info(
            "Server configuration loaded",
            extra={
                "data_dir": self.storage.data_dir,
                "wal_mode": self.storage.wal_mode,
                "busy_timeout_ms": self.storage.busy_timeout_ms,
                "statement_timeout_ms": self.storage.statement_timeout_ms,
                "max_batch_items": self.sync.max_batch_items,
                "rate_limit_enabled": self.rate_limit.enabled,
                "log_level": self.observability.log_level,
            },
        )
