"""
Import Configuration
Settings for the catalog import pipeline, loaded from environment / .env.
"""

import json
from typing import Any, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ImportSettings(BaseSettings):
    """
    Catalog import settings.

    Environment variables use the IMPORT_ prefix, except the shared
    infrastructure URLs (DATABASE_URL, CELERY_BROKER_URL, ...).
    """

    app_name: str = "Catalog Import API"
    version: str = "0.1.0"
    environment: str = Field(default="development", alias="ENVIRONMENT")

    # Infrastructure
    database_url: str = Field(default="sqlite:///./catalog_import.db", alias="DATABASE_URL")
    celery_broker_url: str = Field(default="redis://localhost:6379/0", alias="CELERY_BROKER_URL")
    celery_result_backend: str = Field(
        default="redis://localhost:6379/0", alias="CELERY_RESULT_BACKEND"
    )
    dispatcher: str = Field(default="thread", alias="IMPORT_DISPATCHER")  # thread or celery

    # API server
    host: str = Field(default="0.0.0.0", alias="API_HOST")
    port: int = Field(default=8000, alias="API_PORT")
    reload: bool = Field(default=False, alias="API_RELOAD")

    # Files
    upload_dir: str = Field(default="data/imports/uploads", alias="IMPORT_UPLOAD_DIR")
    max_file_size_mb: int = Field(default=100, alias="IMPORT_MAX_FILE_SIZE_MB")
    max_rows: int = Field(default=10000, alias="IMPORT_MAX_ROWS")
    chunk_size: int = Field(default=500, alias="IMPORT_CHUNK_SIZE")

    # Artifacts
    artifact_backend: str = Field(default="local", alias="IMPORT_ARTIFACT_BACKEND")  # local or gcs
    artifact_dir: str = Field(default="data/imports/artifacts", alias="IMPORT_ARTIFACT_DIR")
    artifact_base_url: Optional[str] = Field(default=None, alias="IMPORT_ARTIFACT_BASE_URL")
    gcs_bucket: Optional[str] = Field(default=None, alias="IMPORT_GCS_BUCKET")
    report_sample_size: int = Field(default=50, alias="IMPORT_REPORT_SAMPLE_SIZE")

    # Concurrency and time limits
    validation_workers: int = Field(default=4, ge=1, alias="IMPORT_VALIDATION_WORKERS")
    apply_workers: int = Field(default=4, ge=1, alias="IMPORT_APPLY_WORKERS")
    job_timeout_minutes: float = Field(default=60, alias="IMPORT_JOB_TIMEOUT_MINUTES")
    progress_interval: int = Field(default=100, ge=1, alias="IMPORT_PROGRESS_INTERVAL")
    cancel_poll_interval: float = Field(default=1.0, ge=0, alias="IMPORT_CANCEL_POLL_INTERVAL")

    # Store retries
    store_max_retries: int = Field(default=3, ge=0, alias="IMPORT_STORE_MAX_RETRIES")
    store_retry_base_delay: float = Field(default=0.5, alias="IMPORT_STORE_RETRY_BASE_DELAY")
    store_retry_max_delay: float = Field(default=8.0, alias="IMPORT_STORE_RETRY_MAX_DELAY")

    # Images
    enable_image_validation: bool = Field(default=False, alias="IMPORT_ENABLE_IMAGE_VALIDATION")
    image_check_timeout_ms: int = Field(default=3000, alias="IMPORT_IMAGE_CHECK_TIMEOUT_MS")
    max_images_per_product: int = Field(default=20, alias="IMPORT_MAX_IMAGES_PER_PRODUCT")
    max_variants_per_product: int = Field(default=100, alias="IMPORT_MAX_VARIANTS_PER_PRODUCT")

    # Business rules
    default_currency: str = Field(default="usd", alias="IMPORT_DEFAULT_CURRENCY")
    allowed_currencies: List[str] = Field(
        default=["usd", "eur", "gbp", "cad", "aud"], alias="IMPORT_ALLOWED_CURRENCIES"
    )
    enable_pruning: bool = Field(default=False, alias="IMPORT_ENABLE_PRUNING")

    # Logging
    log_level: str = Field(default="INFO", alias="IMPORT_LOG_LEVEL")

    @field_validator("allowed_currencies", mode="before")
    @classmethod
    def parse_currencies(cls, v: Any) -> List[str]:
        """Parse currencies from JSON string, comma-separated string or list."""
        if isinstance(v, str):
            try:
                v = json.loads(v)
            except json.JSONDecodeError:
                v = v.split(",")
        return [str(code).strip().lower() for code in v if str(code).strip()]

    @field_validator("default_currency")
    @classmethod
    def lower_currency(cls, v: str) -> str:
        return v.strip().lower()

    @property
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_mb * 1024 * 1024

    @property
    def job_timeout_seconds(self) -> float:
        return self.job_timeout_minutes * 60

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra fields in .env file
        populate_by_name=True,  # Allow field names as well as env aliases
    )


# Global settings instance
_settings: Optional[ImportSettings] = None


def get_settings() -> ImportSettings:
    """Get global import settings (singleton)."""
    global _settings
    if _settings is None:
        _settings = ImportSettings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    global _settings
    _settings = None
