"""Application settings and configuration.

This module defines all configuration options for the OnAir service.
Settings are loaded from environment variables with sensible defaults.
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import URL


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    Field names are also accepted directly, which is how tests build
    isolated instances.
    """

    # Application metadata
    app_name: str = Field(default="OnAir Radio", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    api_prefix: str = Field(default="/api", alias="API_PREFIX")

    # Storage backend selection
    database_type: Literal["sqlite", "postgres"] = Field(default="sqlite", alias="DATABASE_TYPE")
    db_path: str = Field(default="radio.db", alias="DB_PATH")

    # Networked backend connection parameters
    postgres_host: str = Field(default="localhost", alias="POSTGRES_HOST")
    postgres_port: int = Field(default=5432, alias="POSTGRES_PORT")
    postgres_db: str = Field(default="radio", alias="POSTGRES_DB")
    postgres_user: str = Field(default="radio", alias="POSTGRES_USER")
    postgres_password: str | None = Field(default=None, alias="POSTGRES_PASSWORD")

    # Connection pool tuning (networked backend only)
    db_pool_size: int = Field(default=20, ge=1, alias="DB_POOL_SIZE")
    db_pool_timeout_seconds: float = Field(default=2.0, gt=0, alias="DB_POOL_TIMEOUT_SECONDS")
    db_connect_timeout_seconds: float = Field(
        default=2.0,
        gt=0,
        alias="DB_CONNECT_TIMEOUT_SECONDS",
    )
    db_pool_recycle_seconds: int = Field(default=1800, alias="DB_POOL_RECYCLE_SECONDS")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Schema migration at startup
    migrate_on_startup: bool = Field(default=True, alias="MIGRATE_ON_STARTUP")
    startup_migration_attempts: int = Field(
        default=2,
        ge=1,
        alias="STARTUP_MIGRATION_ATTEMPTS",
    )

    # Anonymous voter identity
    fingerprint_algorithm: Literal["sha256", "blake3"] = Field(
        default="sha256",
        alias="FINGERPRINT_ALGORITHM",
    )
    trust_proxy_headers: bool = Field(default=True, alias="TRUST_PROXY_HEADERS")

    # CORS configuration for the web player
    cors_origins: list[str] = Field(default=["*"], alias="CORS_ORIGINS")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        populate_by_name=True,
        extra="ignore",
    )

    @property
    def postgres_url(self) -> URL:
        """Return the async SQLAlchemy URL for the networked backend."""
        return URL.create(
            "postgresql+asyncpg",
            username=self.postgres_user,
            password=self.postgres_password,
            host=self.postgres_host,
            port=self.postgres_port,
            database=self.postgres_db,
        )


settings = Settings()
