"""
Tiered POS Analytics Store
Centralized Configuration Management

Pydantic settings for both storage tiers, the retention window, the rollup
engine and the consistency auditor. Values come from environment variables
(or a local .env file) and are validated on load.
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class TierDatabaseSettings(BaseSettings):
    """Connection settings shared by the hot and archive endpoints"""

    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=5432, description="Database port")
    name: str = Field(default="pos_operational", description="Database name")
    user: str = Field(default="pos", description="Database user")
    password: SecretStr = Field(default="secure_password", description="Database password")
    url: Optional[str] = Field(default=None, description="Full SQLAlchemy URL (overrides host/port)")
    echo: bool = Field(default=False, description="Echo SQL queries")

    @property
    def async_url(self) -> str:
        """Async database URL - uses url if set, otherwise builds an asyncpg URL"""
        if self.url:
            return self.url
        return (
            f"postgresql+asyncpg://{self.user}:{self.password.get_secret_value()}"
            f"@{self.host}:{self.port}/{self.name}"
        )


class HotDatabaseSettings(TierDatabaseSettings):
    """Hot tier (operational, last N days) database"""

    model_config = SettingsConfigDict(env_prefix="HOT_DB_")


class ArchiveDatabaseSettings(TierDatabaseSettings):
    """Archive tier (analytics) database, also holds the summary relations"""

    model_config = SettingsConfigDict(env_prefix="ARCHIVE_DB_")

    name: str = Field(default="pos_analytics", description="Database name")


class TieringSettings(BaseSettings):
    """Retention window and archival batching"""

    model_config = SettingsConfigDict(env_prefix="TIERING_")

    retention_days: int = Field(default=90, description="Days of data kept in the hot tier")
    archive_batch_days: int = Field(default=30, description="Days moved per archival window")
    verify_archive: bool = Field(default=False, description="Verify each archival window")
    insert_chunk_size: int = Field(default=500, description="Rows per archive INSERT statement")

    @field_validator("retention_days", "archive_batch_days", "insert_chunk_size")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Windows and chunks must be at least one unit wide"""
        if v < 1:
            raise ValueError("must be >= 1")
        return v


class AggregationSettings(BaseSettings):
    """Rollup engine configuration"""

    model_config = SettingsConfigDict(env_prefix="AGGREGATION_")

    max_concurrency: int = Field(default=8, description="Rollup units computed in parallel")
    lock_timeout_seconds: Optional[float] = Field(
        default=None, description="Max wait for a busy (level, store, period) key; None waits forever"
    )


class AuditSettings(BaseSettings):
    """Consistency auditor configuration"""

    model_config = SettingsConfigDict(env_prefix="AUDIT_")

    tolerance: float = Field(default=0.01, description="Absolute monetary tolerance")
    recent_days: int = Field(default=7, description="Days checked by a recent-window audit")
    expected_stores: List[str] = Field(default_factory=list, description="Stores expected to report daily")


class MonitoringSettings(BaseSettings):
    """Logging configuration"""

    model_config = SettingsConfigDict(env_prefix="")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL", description="Logging level")
    log_format: str = Field(default="json", alias="LOG_FORMAT", description="Log format: json or console")


class Settings(BaseSettings):
    """
    Main Application Settings

    Aggregates all configuration sections and provides a single entry point
    for accessing application configuration.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="pos-tiers", alias="APP_NAME", description="Application name")
    app_env: str = Field(default="development", alias="APP_ENV", description="Environment")
    debug: bool = Field(default=False, alias="DEBUG", description="Debug mode")
    version: str = Field(default="1.0.0", description="Application version")

    # Subsystem configurations
    hot_db: HotDatabaseSettings = Field(default_factory=HotDatabaseSettings)
    archive_db: ArchiveDatabaseSettings = Field(default_factory=ArchiveDatabaseSettings)
    tiering: TieringSettings = Field(default_factory=TieringSettings)
    aggregation: AggregationSettings = Field(default_factory=AggregationSettings)
    audit: AuditSettings = Field(default_factory=AuditSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        """Validate environment value"""
        allowed = ["development", "staging", "production", "testing"]
        if v.lower() not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v.lower()

    @property
    def is_production(self) -> bool:
        """Check if running in production"""
        return self.app_env == "production"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Settings are read once per process; a changed retention window
    takes effect on the next run.

    Returns:
        Settings: Application settings instance
    """
    return Settings()
