"""TracePulse settings, read from the environment and `.env`."""

from functools import lru_cache
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Service settings.

    Every field maps to an upper-case environment variable of the same name,
    e.g. `ELASTICSEARCH_TRACES_INDEX`.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    app_name: str = "TracePulse"
    app_env: Literal["development", "testing", "staging", "production"] = "development"
    debug: bool = False

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_format: Literal["json", "console"] = "json"

    # API
    api_host: str = "0.0.0.0"  # noqa: S104
    api_port: int = 8123
    cors_origins: list[str] = [
        "http://localhost:5173",  # Vite dev server (default)
        "http://127.0.0.1:5173",
    ]

    # Elasticsearch
    elasticsearch_url: str = "http://localhost:9200"
    elasticsearch_api_key: str = ""
    elasticsearch_request_timeout_seconds: float = 30.0
    elasticsearch_traces_index: str = "search-traces-pivot"

    # Analytics
    analytics_timestamp_field: str = "trace.timestamps.started_at"
    analytics_time_zone: str = "UTC"
    analytics_group_bucket_size: int = 50
    analytics_pipeline_bucket_size: int = 10000
    analytics_max_series: int = 20
    analytics_max_date_range_days: int = 730
    analytics_live_window_minutes: int = 60

    @field_validator("elasticsearch_url")
    @classmethod
    def validate_elasticsearch_url(cls, v: str) -> str:
        """Validate the Elasticsearch URL scheme.

        Args:
            v: Elasticsearch URL.

        Returns:
            Validated URL without trailing slash.

        Raises:
            ValueError: If the scheme is not http or https.
        """
        if not v.startswith(("http://", "https://")):
            raise ValueError(
                f"Invalid Elasticsearch URL '{v}'. Expected an http:// or https:// URL."
            )
        return v.rstrip("/")

    @field_validator("analytics_time_zone")
    @classmethod
    def validate_time_zone(cls, v: str) -> str:
        """Ensure the analytics time zone is a known IANA zone."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown time zone '{v}'") from e
        return v

    @field_validator(
        "analytics_group_bucket_size",
        "analytics_pipeline_bucket_size",
        "analytics_max_series",
        "analytics_max_date_range_days",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Ensure size limits are positive."""
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app_env == "development"

    @property
    def is_testing(self) -> bool:
        """Check if running in testing mode."""
        return self.app_env == "testing"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton."""
    return Settings()
