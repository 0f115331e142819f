"""
Application Configuration

Pydantic-based settings management using environment variables.
Supports nested configuration, validation, and caching.

Usage:
    from sqlagent.config import get_settings

    settings = get_settings()
    print(settings.llm.default_provider)
    print(settings.query.max_timeout)
"""

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import Field, PostgresDsn, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LLMSettings(BaseSettings):
    """LLM provider configuration."""

    default_provider: Literal["openai", "anthropic"] = Field(
        default="openai", description="Provider used for SQL generation, explanations and summaries"
    )

    # OpenAI configuration
    openai_api_key: str | None = Field(
        None,
        description="OpenAI API key",
        min_length=20,
    )
    openai_model: str = Field(default="gpt-4o", description="OpenAI model")

    # Anthropic configuration
    anthropic_api_key: str | None = Field(
        None,
        description="Anthropic API key",
        min_length=20,
    )
    anthropic_model: str = Field(
        default="claude-3-5-sonnet-20241022", description="Anthropic model"
    )

    sql_model: str | None = Field(
        None,
        description="Optional model override for SQL generation, explanation and schema summaries",
    )

    # Common settings
    temperature: float = Field(
        default=0.0,
        ge=0.0,
        le=2.0,
        description="Default temperature for LLM responses",
    )
    max_tokens: int = Field(
        default=2000,
        gt=0,
        le=16000,
        description="Maximum tokens per LLM response",
    )
    timeout: int = Field(
        default=30,
        gt=0,
        description="Request timeout in seconds",
    )

    model_config = SettingsConfigDict(
        env_prefix="LLM_",
        env_file=".env",
        extra="ignore",
    )

    @field_validator("openai_api_key")
    @classmethod
    def validate_openai_key(cls, v: str | None) -> str | None:
        """Validate OpenAI API key format."""
        if v and not v.startswith("sk-"):
            raise ValueError("OpenAI API key must start with 'sk-'")
        return v

    @field_validator("anthropic_api_key")
    @classmethod
    def validate_anthropic_key(cls, v: str | None) -> str | None:
        """Validate Anthropic API key format."""
        if v and not v.startswith("sk-ant-"):
            raise ValueError("Anthropic API key must start with 'sk-ant-'")
        return v


class SystemDatabaseSettings(BaseSettings):
    """System database configuration (connection registry, schema cache, history)."""

    url: PostgresDsn | None = Field(
        None,
        description="System PostgreSQL connection URL",
    )
    pool_size: int = Field(
        default=5,
        gt=0,
        le=20,
        description="System database connection pool size",
    )

    model_config = SettingsConfigDict(
        env_prefix="SYSTEM_DATABASE_",
        env_file=".env",
        extra="ignore",
    )

    @field_validator("url", mode="before")
    @classmethod
    def normalize_url(cls, v: str | PostgresDsn | None) -> str | PostgresDsn | None:
        """Treat empty strings as missing."""
        if v == "":
            return None
        return v


class PoolSettings(BaseSettings):
    """Pool sizing for attached (external) databases."""

    max_size: int = Field(
        default=5,
        gt=0,
        le=50,
        description="Maximum physical connections per attached database",
    )
    idle_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Seconds an idle pooled connection is kept open",
    )
    connect_timeout: float = Field(
        default=10.0,
        gt=0,
        description="Seconds to wait when opening or acquiring a connection",
    )

    model_config = SettingsConfigDict(
        env_prefix="POOL_",
        env_file=".env",
        extra="ignore",
    )


class QuerySettings(BaseSettings):
    """Execution limits and cache freshness."""

    default_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Statement timeout in seconds when the caller does not pass one",
    )
    max_timeout: float = Field(
        default=120.0,
        gt=0,
        description="Hard ceiling for statement timeouts in seconds",
    )
    default_max_rows: int = Field(
        default=1000,
        gt=0,
        description="Row cap applied when the caller does not pass one",
    )
    schema_max_age_hours: float = Field(
        default=24.0,
        gt=0,
        description="Freshness window for cached schema snapshots",
    )
    history_limit: int = Field(
        default=50,
        gt=0,
        le=1000,
        description="Default number of history entries returned",
    )

    model_config = SettingsConfigDict(
        env_prefix="QUERY_",
        env_file=".env",
        extra="ignore",
    )

    @model_validator(mode="after")
    def validate_timeouts(self) -> "QuerySettings":
        """Ensure the default timeout fits under the ceiling."""
        if self.default_timeout > self.max_timeout:
            raise ValueError(
                f"default_timeout ({self.default_timeout}) must not exceed "
                f"max_timeout ({self.max_timeout})"
            )
        return self


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Application log level",
    )
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log message format",
    )
    date_format: str = Field(
        default="%Y-%m-%d %H:%M:%S",
        description="Log timestamp format",
    )
    file: Path | None = Field(
        default=None,
        description="Optional log file path (None = stdout only)",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        env_file=".env",
        extra="ignore",
    )

    def configure(self) -> None:
        """Configure Python logging with these settings."""
        handlers: list[logging.Handler] = [logging.StreamHandler()]

        if self.file:
            self.file.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(self.file))

        logging.basicConfig(
            level=getattr(logging, self.level),
            format=self.format,
            datefmt=self.date_format,
            handlers=handlers,
            force=True,  # Override any existing configuration
        )


class Settings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    Settings are nested by domain (llm, system_database, pool, query, logging).

    Environment Variables:
        ENVIRONMENT: Deployment environment (development, staging, production)
        APP_NAME: Application name for logging
        DEBUG: Enable debug mode
        DATABASE_CREDENTIALS_KEY: Fernet key for stored credentials
        LLM_*: LLM provider configuration (see LLMSettings)
        SYSTEM_DATABASE_*: System database configuration (see SystemDatabaseSettings)
        POOL_*: Attached database pool sizing (see PoolSettings)
        QUERY_*: Execution limits (see QuerySettings)
        LOG_*: Logging configuration (see LoggingSettings)

    Example:
        >>> settings = get_settings()
        >>> settings.pool.max_size
        5
        >>> settings.query.max_timeout
        120.0
    """

    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    app_name: str = Field(
        default="SQLAgent",
        description="Application name",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )

    # Nested settings
    llm: LLMSettings = Field(default_factory=LLMSettings)
    system_database: SystemDatabaseSettings = Field(default_factory=SystemDatabaseSettings)
    pool: PoolSettings = Field(default_factory=PoolSettings)
    query: QuerySettings = Field(default_factory=QuerySettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    database_credentials_key: str | None = Field(
        default=None,
        description="Fernet key for encrypting stored database credentials.",
        validation_alias="DATABASE_CREDENTIALS_KEY",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    @model_validator(mode="after")
    def configure_logging(self) -> "Settings":
        """Configure logging when settings are loaded."""
        self.logging.configure()
        return self

    def model_post_init(self, __context) -> None:
        """Log configuration on initialization."""
        logger = logging.getLogger(__name__)
        logger.info(
            f"Settings loaded for {self.app_name} ({self.environment})",
            extra={
                "environment": self.environment,
                "debug": self.debug,
                "llm_provider": self.llm.default_provider,
                "pool_max_size": self.pool.max_size,
            },
        )


_DOTENV_PATH = Path(__file__).resolve().parents[1] / ".env"


def _apply_dotenv_precedence() -> None:
    env_source = os.getenv("SQLAGENT_ENV_SOURCE", "dotenv").lower()
    if env_source not in {"dotenv", "envfile", "file"}:
        return
    if _DOTENV_PATH.exists():
        load_dotenv(_DOTENV_PATH, override=True)


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses functools.lru_cache to ensure settings are loaded only once.

    Returns:
        Settings: Singleton settings instance
    """
    _apply_dotenv_precedence()
    return Settings()


def clear_settings_cache() -> None:
    """
    Clear the settings cache.

    Useful for testing when you need to reload settings with different
    environment variables.
    """
    get_settings.cache_clear()
