"""Configuration module for the login store.

Implements Pydantic v2 Settings for configuration management with support for:
- Explicit construction (preferred, keeps tests free of environment mutation)
- Environment variables (LOGIN_STORE_* prefix, plus REDIS_URL / REDIS_HOST)
- YAML/TOML configuration files

Configuration priority (later overrides earlier):
1. Built-in defaults
2. Configuration file (YAML/TOML)
3. Environment variables
4. Explicit keyword arguments
"""

from pathlib import Path
from typing import Literal
from urllib.parse import urlparse

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_REDIS_PORT = 6379

# Number of connections taking part in lock coordination (primary + lock)
LOCK_CONNECTION_COUNT = 2


class Settings(BaseSettings):
    """Login store configuration with explicit defaults.

    Example:
        # Explicit configuration
        settings = Settings(redis_url="redis://cache.internal:6380/0")

        # Load from environment only
        settings = Settings()

        # Relaxed quorum: one reachable connection is enough for a lock
        settings = Settings(lock_quorum=1)
    """

    model_config = SettingsConfigDict(
        env_prefix="LOGIN_STORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    # ========================================
    # Application Settings
    # ========================================

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )

    log_format: Literal["json", "text"] = Field(default="json", description="Log output format")

    # ========================================
    # Redis Connection
    # ========================================

    redis_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("REDIS_URL", "LOGIN_STORE_REDIS_URL"),
        description="Redis URL; when set, host and port are parsed from it",
    )

    redis_host: str = Field(
        default="localhost",
        validation_alias=AliasChoices("REDIS_HOST", "LOGIN_STORE_REDIS_HOST"),
        description="Redis host used when no URL is configured",
    )

    redis_port: int = Field(
        default=DEFAULT_REDIS_PORT, ge=1, le=65535, description="Redis port used with redis_host"
    )

    redis_retry_step_ms: int = Field(
        default=100, ge=1, description="Reconnect backoff added per failed attempt"
    )

    redis_retry_max_delay_ms: int = Field(
        default=3000, ge=1, description="Upper bound for the reconnect backoff"
    )

    redis_max_retries_per_request: int = Field(
        default=100, ge=0, description="Retries of a single command before it fails"
    )

    redis_connect_timeout_seconds: float = Field(
        default=30.0, gt=0, description="Timeout for establishing a connection"
    )

    # ========================================
    # Distributed Lock
    # ========================================

    lock_drift_factor: float = Field(
        default=0.01, ge=0, lt=1, description="Clock drift compensation factor"
    )

    lock_retry_count: int = Field(default=10, ge=0, description="Lock acquisition retries")

    lock_retry_delay_ms: int = Field(default=200, ge=0, description="Base delay between retries")

    lock_retry_jitter_ms: int = Field(
        default=200, ge=0, description="Random jitter applied to the retry delay"
    )

    lock_client_timeout_ms: int = Field(
        default=50,
        ge=1,
        description="Time limit per connection for one lock script call",
    )

    lock_quorum: int = Field(
        default=LOCK_CONNECTION_COUNT,
        description="Connections that must grant a lock (2 = majority of the two connections)",
    )

    # ========================================
    # Batch Dispatch
    # ========================================

    batch_interval_ms: int = Field(
        default=10000, ge=1, description="Period between login batch flushes"
    )

    # ========================================
    # Validators
    # ========================================

    @field_validator("redis_url")
    @classmethod
    def validate_redis_url(cls, v: str | None) -> str | None:
        """Validate Redis URL scheme."""
        if v is None:
            return v
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("redis_url must start with redis:// or rediss://")
        return v

    @field_validator("lock_quorum")
    @classmethod
    def validate_lock_quorum(cls, v: int) -> int:
        """Quorum can never exceed the number of lock connections."""
        if not 1 <= v <= LOCK_CONNECTION_COUNT:
            raise ValueError(f"lock_quorum must be between 1 and {LOCK_CONNECTION_COUNT}")
        return v

    # ========================================
    # Helper Methods
    # ========================================

    @property
    def redis_target_host(self) -> str:
        """Host to connect to, preferring the URL when configured."""
        if self.redis_url:
            return urlparse(self.redis_url).hostname or self.redis_host
        return self.redis_host

    @property
    def redis_target_port(self) -> int:
        """Port to connect to; falls back to the standard port if the URL has none."""
        if self.redis_url:
            return urlparse(self.redis_url).port or DEFAULT_REDIS_PORT
        return self.redis_port


# ========================================
# Global Settings Instance
# ========================================

_settings: Settings | None = None


def get_settings() -> Settings:
    """Get global settings instance (singleton).

    Returns:
        Settings instance
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def set_settings(settings: Settings | None) -> None:
    """Set global settings instance.

    Args:
        settings: Settings instance to use globally, or None to reset
    """
    global _settings
    _settings = settings


def load_settings_from_file(config_file: Path | str) -> Settings:
    """Load settings from YAML or TOML configuration file.

    Args:
        config_file: Path to configuration file

    Returns:
        Settings instance loaded from file

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config file format is invalid
    """
    config_path = Path(config_file)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    suffix = config_path.suffix.lower()

    if suffix in [".yaml", ".yml"]:
        import yaml

        with open(config_path) as f:
            config_data = yaml.safe_load(f) or {}
    elif suffix == ".toml":
        import tomllib

        with open(config_path, "rb") as f:
            config_data = tomllib.load(f)
    else:
        raise ValueError(f"Unsupported config file format: {suffix}. Use .yaml, .yml, or .toml")

    return Settings(**config_data)
