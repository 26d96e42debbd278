"""
Configuration for the Employee Memory engine.

Values default to a local development setup (in-memory vector index,
local Redis and Ollama). The encryption key has no default: it must come
from a durable secret store, otherwise encrypted memories would become
unreadable after a restart.
"""

import os
import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Optional

from .errors import ConfigurationError

logger = logging.getLogger("config")


def decode_encryption_key(raw_key: Optional[str]) -> bytes:
    """
    Decode a base64 encoded AES-256 key.

    Args:
        raw_key: Base64 text holding exactly 32 bytes

    Returns:
        The raw key bytes
    """
    if not raw_key:
        raise ConfigurationError(
            "MEMORY_ENCRYPTION_KEY is required when encryption is enabled",
            operation="load_config",
        )
    try:
        key = base64.b64decode(raw_key, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ConfigurationError(
            f"MEMORY_ENCRYPTION_KEY is not valid base64: {str(e)}",
            operation="load_config",
        ) from e
    if len(key) != 32:
        raise ConfigurationError(
            f"MEMORY_ENCRYPTION_KEY must decode to 32 bytes, got {len(key)}",
            operation="load_config",
        )
    return key


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class MemoryConfig:
    """Runtime settings for the memory engine and its collaborators."""
    encryption_key: Optional[bytes] = None
    encryption_enabled: bool = True

    # Index dimension matches all-minilm's native output; a larger value
    # only zero-pads the vector.
    embedding_dimension: int = 384
    temporal_dimension: int = 512

    ollama_base_url: str = "http://localhost:11434"
    embedding_model: str = "all-minilm"
    request_timeout: int = 60

    redis_url: str = "redis://localhost:6379/0"
    chroma_persist_directory: Optional[str] = None

    storage_target_mb: float = 100.0
    cleanup_interval: int = 24 * 60 * 60
    cache_write_attempts: int = 3

    def __post_init__(self):
        if self.encryption_enabled and not self.encryption_key:
            raise ConfigurationError(
                "An encryption key is required when encryption is enabled",
                operation="load_config",
            )
        if self.encryption_key is not None and len(self.encryption_key) != 32:
            raise ConfigurationError(
                "Encryption key must be 32 bytes for AES-256-GCM",
                operation="load_config",
            )
        if self.embedding_dimension <= 0 or self.temporal_dimension < 4:
            raise ConfigurationError(
                "Embedding dimensions must be positive and the temporal "
                "dimension must hold at least 4 features",
                operation="load_config",
            )

    @classmethod
    def from_env(cls) -> 'MemoryConfig':
        """Build a configuration from environment variables."""
        encryption_enabled = _env_bool("MEMORY_ENCRYPTION_ENABLED", True)
        raw_key = os.environ.get("MEMORY_ENCRYPTION_KEY")
        encryption_key = None
        if encryption_enabled or raw_key:
            encryption_key = decode_encryption_key(raw_key)

        try:
            config = cls(
                encryption_key=encryption_key,
                encryption_enabled=encryption_enabled,
                embedding_dimension=int(os.environ.get("EMBEDDING_DIMENSION", 384)),
                temporal_dimension=int(os.environ.get("TEMPORAL_DIMENSION", 512)),
                ollama_base_url=os.environ.get("OLLAMA_BASE_URL", "http://localhost:11434"),
                embedding_model=os.environ.get("EMBEDDING_MODEL", "all-minilm"),
                redis_url=os.environ.get("REDIS_URL", "redis://localhost:6379/0"),
                chroma_persist_directory=os.environ.get("CHROMA_PERSIST_DIRECTORY") or None,
                storage_target_mb=float(os.environ.get("STORAGE_TARGET_MB", 100.0)),
                cleanup_interval=int(os.environ.get("CLEANUP_INTERVAL", 24 * 60 * 60)),
            )
        except ValueError as e:
            raise ConfigurationError(
                f"Invalid numeric setting: {str(e)}", operation="load_config"
            ) from e

        logger.info(
            f"Loaded configuration (encryption={'on' if encryption_enabled else 'off'}, "
            f"dimension={config.embedding_dimension}, model={config.embedding_model})"
        )
        return config
