"""
Configuration management for cvdb Server.

All configuration is done via environment variables - no config files inside containers.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Production deployments MUST set explicit platform credentials
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Deprecate settings by logging warnings but continuing to support them
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class PlatformBackend(Enum):
    """Supported database platform backends."""

    TURSO = "turso"
    LOCAL = "local"


@dataclass(frozen=True)
class StorageConfig:
    """Local storage configuration.

    Attributes:
        data_dir: Directory for SQLite databases
        control_db_name: File name of the control-plane registry database
        local_db_pattern: Pattern for anonymous session database files
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
        max_sessions: Anonymous sessions kept in memory at once
    """

    data_dir: str = "/var/lib/cvdb"
    control_db_name: str = "control.db"
    local_db_pattern: str = "session_{session_id}.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000
    max_sessions: int = 10000

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            data_dir=os.getenv("DATA_DIR", "/var/lib/cvdb"),
            control_db_name=os.getenv("CONTROL_DB_NAME", "control.db"),
            local_db_pattern=os.getenv("LOCAL_DB_PATTERN", "session_{session_id}.db"),
            wal_mode=os.getenv("SQLITE_WAL_MODE", "true").lower() == "true",
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
            max_sessions=int(os.getenv("MAX_SESSIONS", "10000")),
        )


@dataclass(frozen=True)
class PlatformConfig:
    """Database platform configuration.

    Attributes:
        api_base: Platform API base URL
        api_token: Platform API bearer token
        org_name: Organization that owns tenant databases
        group_name: Placement group for new databases
        db_name_prefix: Prefix of per-principal database names
    """

    api_base: str = "https://api.turso.tech/v1"
    api_token: str | None = None
    org_name: str | None = None
    group_name: str = "default"
    db_name_prefix: str = "buildcv"

    @classmethod
    def from_env(cls) -> PlatformConfig:
        """Load configuration from environment variables."""
        return cls(
            api_base=os.getenv("TURSO_API_BASE", "https://api.turso.tech/v1"),
            api_token=os.getenv("TURSO_PLATFORM_API_TOKEN"),
            org_name=os.getenv("TURSO_ORG_NAME"),
            group_name=os.getenv("TURSO_GROUP_NAME", "default"),
            db_name_prefix=os.getenv("TENANT_DB_PREFIX", "buildcv"),
        )


@dataclass(frozen=True)
class ConnectionCacheConfig:
    """Connection cache configuration.

    Attributes:
        ttl_seconds: Lifetime of a cached tenant connection (0 = never expire)
        retire_grace_seconds: How long a replaced connection stays open for
            requests that still hold it
    """

    ttl_seconds: int = 900
    retire_grace_seconds: int = 60

    @classmethod
    def from_env(cls) -> ConnectionCacheConfig:
        """Load configuration from environment variables."""
        return cls(
            ttl_seconds=int(os.getenv("CONNECTION_TTL_SECONDS", "900")),
            retire_grace_seconds=int(os.getenv("CONNECTION_RETIRE_GRACE_SECONDS", "60")),
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
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class ServerConfig:
    """Complete server configuration.

    Attributes:
        platform_backend: Which platform provisions tenant databases
        storage: Local storage configuration
        platform: Platform API configuration
        connections: Connection cache configuration
        observability: Logging configuration
    """

    platform_backend: PlatformBackend = PlatformBackend.LOCAL
    storage: StorageConfig = field(default_factory=StorageConfig)
    platform: PlatformConfig = field(default_factory=PlatformConfig)
    connections: ConnectionCacheConfig = field(default_factory=ConnectionCacheConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Returns:
            ServerConfig with all sections populated from environment.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        backend_str = os.getenv("PLATFORM_BACKEND", "local").lower()
        try:
            platform_backend = PlatformBackend(backend_str)
        except ValueError:
            raise ValueError(
                f"Invalid PLATFORM_BACKEND '{backend_str}'. Must be one of: turso, local"
            )

        config = cls(
            platform_backend=platform_backend,
            storage=StorageConfig.from_env(),
            platform=PlatformConfig.from_env(),
            connections=ConnectionCacheConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.platform_backend == PlatformBackend.TURSO:
            if not self.platform.api_token:
                raise ValueError("TURSO_PLATFORM_API_TOKEN is required when PLATFORM_BACKEND=turso")
            if not self.platform.org_name:
                raise ValueError("TURSO_ORG_NAME is required when PLATFORM_BACKEND=turso")

        if self.connections.ttl_seconds < 0:
            raise ValueError("CONNECTION_TTL_SECONDS must be >= 0")

        if self.connections.retire_grace_seconds < 0:
            raise ValueError("CONNECTION_RETIRE_GRACE_SECONDS must be >= 0")

        if self.storage.max_sessions < 1:
            raise ValueError("MAX_SESSIONS must be >= 1")

        if "{session_id}" not in self.storage.local_db_pattern:
            raise ValueError("LOCAL_DB_PATTERN must contain {session_id}")

        if not os.path.exists(self.storage.data_dir):
            logger.warning(
                f"Data directory does not exist: {self.storage.data_dir}. "
                "It will be created on first write."
            )

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Server configuration loaded",
            extra={
                "platform_backend": self.platform_backend.value,
                "platform_api": self.platform.api_base
                if self.platform_backend == PlatformBackend.TURSO
                else None,
                "platform_org": self.platform.org_name,
                "platform_group": self.platform.group_name,
                "platform_token_set": self.platform.api_token is not None,
                "data_dir": self.storage.data_dir,
                "connection_ttl_seconds": self.connections.ttl_seconds,
                "log_level": self.observability.log_level,
            },
        )
