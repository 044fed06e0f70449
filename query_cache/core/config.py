"""
Query Cache Configuration

Configuration management with environment variable support.
Implements defaults and validation for all cache settings.
"""

from functools import lru_cache
from typing import List

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..constants import DEFAULT_CACHE_TIME

# Load environment variables from .env file
load_dotenv()


def _split_csv(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """Cache layer settings with validation and defaults."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=True, extra="ignore"
    )

    # Environment settings
    ENVIRONMENT: str = Field(
        default="development", description="Application environment"
    )

    # Cache behaviour
    CACHE_TIME: int = Field(
        default=DEFAULT_CACHE_TIME,
        ge=0,
        le=86400 * 365,
        description="Default TTL in seconds (0 disables storage)",
    )
    CACHE_STORAGE: str = Field(default="memory", description="Tag store type")
    CACHE_EXCLUDE_MODELS: str = Field(
        default="", description="Entity types never cached (comma-separated)"
    )
    CACHE_EXCLUDE_METHODS: str = Field(
        default="", description="Read operations never cached (comma-separated)"
    )
    CACHE_UNCONFIGURED_MODELS: bool = Field(
        default=True, description="Cache entity types that have no model rule"
    )

    # Redis configuration
    REDIS_URL: str = Field(
        default="redis://localhost:6379", description="Redis connection URL"
    )
    REDIS_MAX_CONNECTIONS: int = Field(
        default=10, ge=1, le=50, description="Redis connection pool size"
    )
    REDIS_SCAN_COUNT: int = Field(
        default=100, ge=10, le=10000, description="SCAN batch size for invalidation"
    )

    # Development and debugging
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_JSON: bool = Field(default=True, description="Render logs as JSON")

    @field_validator("ENVIRONMENT")
    @classmethod
    def validate_environment(cls, v):
        """Validate environment value."""
        allowed = ["development", "test", "staging", "production"]
        if v not in allowed:
            raise ValueError(f"ENVIRONMENT must be one of: {allowed}")
        return v

    @field_validator("CACHE_STORAGE")
    @classmethod
    def validate_cache_storage(cls, v):
        """Validate tag store type."""
        allowed = ["memory", "redis"]
        if v not in allowed:
            raise ValueError(f"CACHE_STORAGE must be one of: {allowed}")
        return v

    @field_validator("REDIS_URL")
    @classmethod
    def validate_redis_url(cls, v):
        """Validate Redis URL format."""
        if not v.startswith(("redis://", "rediss://", "unix://")):
            raise ValueError("REDIS_URL must be a redis:// or rediss:// URL")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed:
            raise ValueError(f"LOG_LEVEL must be one of: {allowed}")
        return v.upper()

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENVIRONMENT == "production"

    @property
    def exclude_models_list(self) -> List[str]:
        """Get excluded entity types as list."""
        return _split_csv(self.CACHE_EXCLUDE_MODELS)

    @property
    def exclude_methods_list(self) -> List[str]:
        """Get excluded read operations as list."""
        return _split_csv(self.CACHE_EXCLUDE_METHODS)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
