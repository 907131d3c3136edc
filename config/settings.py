"""
Policy Engine Settings Configuration

Centralized configuration using Pydantic Settings with environment variable support.
"""

from enum import Enum
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Application environment types."""
    DEVELOPMENT = "development"
    TEST = "test"
    STAGING = "staging"
    PRODUCTION = "production"


class CacheBackend(str, Enum):
    """Supported cache backends."""
    MEMORY = "memory"
    REDIS = "redis"


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Supports .env file loading and provides sensible defaults for development.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Cache Configuration
    # ==========================================================================

    cache_backend: CacheBackend = Field(
        default=CacheBackend.MEMORY,
        description="Cache backend for policy documents and evaluation results"
    )

    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL"
    )

    cache_key_prefix: str = Field(
        default="policy",
        description="Prefix for every cache key written by the engine"
    )

    policy_cache_ttl_seconds: int = Field(
        default=300,
        gt=0,
        description="Time-to-live for cached policy documents"
    )

    evaluation_cache_ttl_seconds: int = Field(
        default=60,
        gt=0,
        description="Time-to-live for cached evaluation results"
    )

    # ==========================================================================
    # Storage Configuration
    # ==========================================================================

    tenant_store_path: Optional[str] = Field(
        default=None,
        description="JSON file holding tenant configurations (in-memory when unset)"
    )

    audit_log_path: Optional[str] = Field(
        default=None,
        description="JSONL file receiving audit entries (in-memory only when unset)"
    )

    # ==========================================================================
    # Evaluation Configuration
    # ==========================================================================

    evaluation_timeout_seconds: Optional[float] = Field(
        default=None,
        gt=0,
        description="Deadline applied to each evaluation made by the HTTP layer"
    )

    enforce_resource_ownership: bool = Field(
        default=False,
        description="Require resource owner_id to match the caller for 'own' scope"
    )

    # ==========================================================================
    # Security Configuration
    # ==========================================================================

    api_key: Optional[str] = Field(
        default=None,
        description="API key for the administrative policy endpoints"
    )

    # ==========================================================================
    # Application Configuration
    # ==========================================================================

    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Application environment"
    )

    api_host: str = Field(
        default="0.0.0.0",
        description="API server host"
    )

    api_port: int = Field(
        default=8000,
        description="API server port"
    )

    debug: bool = Field(
        default=True,
        description="Enable debug mode"
    )

    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )

    # ==========================================================================
    # Validators
    # ==========================================================================

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a valid Python logging level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_v = v.upper()
        if upper_v not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return upper_v

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == Environment.PRODUCTION

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == Environment.DEVELOPMENT


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.

    Returns:
        Settings: Application settings instance
    """
    return Settings()
