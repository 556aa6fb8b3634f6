"""
Configuration management for tipstore.

All configuration is done via environment variables with the ``TIPSTORE_``
prefix. Settings are loaded with pydantic-settings and validated once at
startup.

Invariants:
    - All settings have sensible defaults for local development
    - Secrets are never logged or exposed in error messages
    - TTLs are expressed in seconds

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep TTL defaults in step with how fresh each entity kind must be
"""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

MAX_PAYLOAD_BYTES = 254 * 1024 * 1024  # 254 MiB


class ContentBackendKind(str, Enum):
    """Supported content network backends."""

    MEMORY = "memory"
    GATEWAY = "gateway"


class LocalStoreKind(str, Enum):
    """Supported local durable stores."""

    MEMORY = "memory"
    SQLITE = "sqlite"


class StorageConfig(BaseSettings):
    """tipstore configuration loaded from environment."""

    # Content network
    content_backend: ContentBackendKind = Field(
        default=ContentBackendKind.MEMORY, description="Content network backend"
    )
    gateway_url: str = Field(
        default="http://localhost:3000/api/filcdn", description="Storage gateway base URL"
    )
    client_address: str = Field(
        default="0x0000000000000000000000000000000000000000",
        description="Account address used to build public URLs",
    )
    network: str = Field(default="calibration", description="Storage network name")
    request_timeout: float = Field(default=30.0, description="Gateway request timeout seconds")
    max_payload_bytes: int = Field(default=MAX_PAYLOAD_BYTES, description="Upload size ceiling")

    # Local durable store
    local_store: LocalStoreKind = Field(
        default=LocalStoreKind.SQLITE, description="Index/cache storage backend"
    )
    sqlite_path: str = Field(default="tipstore.db", description="SQLite file for index/cache")
    sqlite_busy_timeout_ms: int = Field(default=5000, description="SQLite busy timeout")
    key_prefix: str = Field(default="tipstore", description="Prefix for local store keys")

    # Cache TTLs (seconds)
    event_ttl_seconds: float = Field(default=5 * 60)
    speaker_ttl_seconds: float = Field(default=10 * 60)
    tip_ttl_seconds: float = Field(default=2 * 60)

    # Subscriptions
    poll_interval_seconds: float = Field(default=10.0, description="Tip polling interval")

    # Observability
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="text", description="Log format (json, text)")

    model_config = {"env_prefix": "TIPSTORE_"}

    @property
    def public_url_template(self) -> str:
        """Template for public content URLs."""
        return "https://{address}." + self.network + ".filcdn.io/{cid}"

    def validate_settings(self) -> None:
        """Validate configuration consistency.

        Raises:
            ConfigurationError: If configuration is invalid.
        """
        if self.max_payload_bytes <= 0:
            raise ConfigurationError("TIPSTORE_MAX_PAYLOAD_BYTES must be positive")
        if self.max_payload_bytes > MAX_PAYLOAD_BYTES:
            raise ConfigurationError(
                f"TIPSTORE_MAX_PAYLOAD_BYTES cannot exceed the network limit ({MAX_PAYLOAD_BYTES})"
            )
        for name in ("event_ttl_seconds", "speaker_ttl_seconds", "tip_ttl_seconds"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"TIPSTORE_{name.upper()} must be positive")
        if self.poll_interval_seconds <= 0:
            raise ConfigurationError("TIPSTORE_POLL_INTERVAL_SECONDS must be positive")
        if self.content_backend == ContentBackendKind.GATEWAY and not self.gateway_url:
            raise ConfigurationError(
                "TIPSTORE_GATEWAY_URL is required when TIPSTORE_CONTENT_BACKEND=gateway"
            )
        if self.local_store == LocalStoreKind.SQLITE:
            if not self.sqlite_path:
                raise ConfigurationError(
                    "TIPSTORE_SQLITE_PATH is required when TIPSTORE_LOCAL_STORE=sqlite"
                )
            parent = Path(self.sqlite_path).parent
            if not parent.exists():
                logger.warning(
                    f"SQLite directory does not exist: {parent}. "
                    "It will be created on first write."
                )

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Storage configuration loaded",
            extra={
                "content_backend": self.content_backend.value,
                "gateway_url": self.gateway_url
                if self.content_backend == ContentBackendKind.GATEWAY
                else None,
                "network": self.network,
                "local_store": self.local_store.value,
                "sqlite_path": self.sqlite_path
                if self.local_store == LocalStoreKind.SQLITE
                else None,
                "event_ttl_seconds": self.event_ttl_seconds,
                "speaker_ttl_seconds": self.speaker_ttl_seconds,
                "tip_ttl_seconds": self.tip_ttl_seconds,
                "poll_interval_seconds": self.poll_interval_seconds,
                "log_level": self.log_level,
            },
        )
