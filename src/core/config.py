"""Settings for the coordination backend.

Values come from the process environment, then an optional .env file at
the repository root, then the defaults below. Collaborators (email relay,
object storage) stay off until they are both switched on and configured.
"""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parents[2]
ENV_FILE = PROJECT_ROOT / ".env"

DEFAULT_DATABASE_URL = f"sqlite:///{(PROJECT_ROOT / 'greia_coordination.db').as_posix()}"
DEFAULT_JWT_SECRET = "change-me"

LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
LOG_FORMATS = {"text", "json"}


def _anchor_sqlite_path(url: str) -> str:
    """Relative SQLite file paths are taken relative to PROJECT_ROOT."""
    prefix = "sqlite:///"
    if not url.startswith(prefix):
        return url

    path = url[len(prefix):]
    if path == ":memory:" or path.startswith("/") or ":" in path:
        return url
    return prefix + (PROJECT_ROOT / path.removeprefix("./")).as_posix()


class Settings(BaseSettings):
    """Typed view of the environment. Field aliases are the variable names."""

    model_config = SettingsConfigDict(
        env_file=ENV_FILE if ENV_FILE.exists() else None,
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # -------------------------------------------------------------------------
    # Database
    # -------------------------------------------------------------------------
    database_url: str = Field(
        default=DEFAULT_DATABASE_URL,
        alias="DATABASE_URL",
        description="SQLAlchemy connection string.",
    )
    db_pool_size: int = Field(default=5, alias="DB_POOL_SIZE", ge=1)
    db_max_overflow: int = Field(default=10, alias="DB_MAX_OVERFLOW", ge=0)
    db_pool_timeout: int = Field(default=30, alias="DB_POOL_TIMEOUT", ge=1)

    # -------------------------------------------------------------------------
    # Object storage (S3 or S3-compatible)
    # -------------------------------------------------------------------------
    s3_bucket: Optional[str] = Field(default=None, alias="S3_BUCKET")
    s3_region: Optional[str] = Field(default=None, alias="S3_REGION")
    s3_endpoint_url: Optional[str] = Field(default=None, alias="S3_ENDPOINT_URL")
    aws_access_key_id: Optional[str] = Field(default=None, alias="AWS_ACCESS_KEY_ID")
    aws_secret_access_key: Optional[str] = Field(default=None, alias="AWS_SECRET_ACCESS_KEY")
    storage_url_expiry_seconds: int = Field(
        default=300,
        alias="STORAGE_URL_EXPIRY_SECONDS",
        ge=1,
        description="Lifetime of presigned upload/download URLs.",
    )
    contract_content_type: str = Field(default="application/pdf", alias="CONTRACT_CONTENT_TYPE")

    # -------------------------------------------------------------------------
    # Email relay (SES)
    # -------------------------------------------------------------------------
    enable_email_relay: bool = Field(
        default=False,
        alias="ENABLE_EMAIL_RELAY",
        description="Relay in-app notifications by email",
    )
    ses_region: Optional[str] = Field(default=None, alias="SES_REGION")
    ses_from_address: Optional[str] = Field(default=None, alias="SES_FROM")
    relay_failure_threshold: int = Field(default=3, alias="RELAY_FAILURE_THRESHOLD", ge=1)
    relay_recovery_timeout: int = Field(default=300, alias="RELAY_RECOVERY_TIMEOUT", ge=1)

    # -------------------------------------------------------------------------
    # Auth
    # -------------------------------------------------------------------------
    jwt_secret_key: str = Field(default=DEFAULT_JWT_SECRET, alias="JWT_SECRET_KEY")
    jwt_access_token_expire_minutes: int = Field(
        default=60 * 24, alias="JWT_ACCESS_TOKEN_EXPIRE_MINUTES", ge=1
    )

    # -------------------------------------------------------------------------
    # Application
    # -------------------------------------------------------------------------
    dry_run: bool = Field(default=True, alias="DRY_RUN")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="text", alias="LOG_FORMAT")  # "text" or "json"
    environment: str = Field(default="local", alias="ENVIRONMENT")
    referral_default_fee_pct: float = Field(
        default=25.0, alias="REFERRAL_DEFAULT_FEE_PCT", ge=0.0, le=100.0
    )
    conversation_list_limit: int = Field(default=200, alias="CONVERSATION_LIST_LIMIT", ge=1)
    lead_list_limit: int = Field(default=200, alias="LEAD_LIST_LIMIT", ge=1)

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"LOG_LEVEL must be one of {sorted(LOG_LEVELS)}")
        return level

    @field_validator("log_format")
    @classmethod
    def normalize_log_format(cls, v: str) -> str:
        fmt = v.lower()
        if fmt not in LOG_FORMATS:
            raise ValueError(f"LOG_FORMAT must be one of {sorted(LOG_FORMATS)}")
        return fmt

    @model_validator(mode="after")
    def validate_production_secrets(self) -> "Settings":
        """Refuse to run production with the placeholder token secret."""
        if self.environment == "production" and self.jwt_secret_key == DEFAULT_JWT_SECRET:
            raise ValueError("JWT_SECRET_KEY must be set in production mode")
        return self

    @model_validator(mode="after")
    def anchor_database_url(self) -> "Settings":
        self.database_url = _anchor_sqlite_path(self.database_url)
        return self

    # -------------------------------------------------------------------------
    # Collaborator switches
    # -------------------------------------------------------------------------

    def is_storage_enabled(self) -> bool:
        """Object storage counts as configured once a bucket is named."""
        return bool(self.s3_bucket)

    def is_email_relay_enabled(self) -> bool:
        """ENABLE_EMAIL_RELAY is on and SES_FROM names a sender."""
        return self.enable_email_relay and bool(self.ses_from_address)

    def get_enabled_services(self) -> list[str]:
        """Names of the collaborators that are live ("s3", "ses")."""
        services = []
        if self.is_storage_enabled():
            services.append("s3")
        if self.is_email_relay_enabled():
            services.append("ses")
        return services


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings, read once. Call reload_settings() to re-read."""
    return Settings()


def reload_settings() -> Settings:
    """Drop the cached settings and read the environment again."""
    get_settings.cache_clear()
    return get_settings()
