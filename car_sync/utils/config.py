"""Configuration loader and settings helpers for car_sync."""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field, field_validator
from pydantic import (
    ValidationError as PydanticValidationError,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..exceptions import ConfigurationError


logger = logging.getLogger(__name__)

REQUIRED_ENV: tuple[str, ...] = (
    "SUPABASE_URL",
    "SUPABASE_SERVICE_ROLE_KEY",
    "API_BASE_URL",
    "API_KEY",
)


def load_yaml_config(config_path: str | Path) -> dict[str, Any]:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        Configuration dictionary

    Raises:
        ConfigurationError: If file not found or invalid YAML
    """
    try:
        with open(config_path) as f:
            config = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigurationError(f"Configuration file not found: {config_path}")
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}")
    if config is None:
        return {}
    if not isinstance(config, dict):
        raise ConfigurationError(f"Configuration file {config_path} must contain a mapping")
    return config


class GlobalSettings(BaseSettings):
    """Sync settings sourced from environment variables.

    Field names map one-to-one onto the documented environment variables
    (``API_BASE_URL``, ``CONCURRENCY``, ``RPS`` ...), matched case-insensitively.
    """

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=(".env", ".env.local"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: str = "development"
    log_level: str = "INFO"

    # Required credentials and endpoints
    supabase_url: str | None = None
    supabase_service_role_key: str | None = None
    api_base_url: str | None = None
    api_key: str | None = None

    # Throughput tuning
    concurrency: int = Field(default=20, ge=1)
    rps: float = Field(default=35.0, gt=0)
    bucket_capacity: int | None = Field(default=None, ge=1)
    rate_limit_max_wait_seconds: float = Field(default=60.0, gt=0)
    page_size: int = Field(default=200, ge=1)
    batch_size: int = Field(default=500, ge=1)
    parallel_batches: int = Field(default=8, ge=1)
    max_pending_pages: int | None = Field(default=None, ge=1)
    sub_chunk_size: int = Field(default=100, ge=1)
    write_pause_seconds: float = Field(default=0.1, ge=0)

    # Fetching and resilience
    max_retries: int = Field(default=3, ge=0)
    request_timeout_seconds: float = Field(default=30.0, gt=0)
    circuit_failure_threshold: int = Field(default=10, ge=1)
    circuit_cooldown_seconds: float = Field(default=60.0, gt=0)

    # Driver loop limits
    max_consecutive_empty_pages: int = Field(default=5, ge=1)
    max_pages: int = Field(default=5000, ge=1)
    max_total_errors: int = Field(default=50, ge=0)
    honor_upstream_has_more: bool = True
    detect_changes: bool = False
    error_report_limit: int = Field(default=5, ge=0)

    # Checkpointing
    checkpoint_backend: str = "file"
    checkpoint_path: Path = Path("/tmp/sync-checkpoint.json")
    checkpoint_interval: int = Field(default=10, ge=1)
    checkpoint_max_age_hours: float = Field(default=24.0, gt=0)
    run_identity: str = "cars-sync-main"

    # Datastore layout
    staging_table: str = "cars_staging"
    primary_table: str = "cars"
    merge_rpc: str = "bulk_merge_from_staging"
    mark_inactive_rpc: str = "mark_missing_inactive"

    # Local bookkeeping and scheduling
    database_url: str | None = None
    redis_url: str | None = None
    sync_schedule_minutes: int = Field(default=360, ge=1)
    sync_config_file: Path | None = None

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        """Ensure log level values are uppercase for logging config."""

        return value.upper()

    @field_validator("checkpoint_backend")
    @classmethod
    def _normalize_checkpoint_backend(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in {"file", "database"}:
            raise ValueError("checkpoint_backend must be 'file' or 'database'")
        return normalized

    @field_validator("api_base_url", "supabase_url", mode="before")
    @classmethod
    def _strip_trailing_slash(cls, value: Any) -> Any:
        if isinstance(value, str):
            stripped = value.strip().rstrip("/")
            return stripped or None
        return value

    @field_validator("checkpoint_path", "sync_config_file", mode="before")
    @classmethod
    def _expand_paths(cls, value: Any) -> Any:
        """Allow string paths and expand user markers."""

        if isinstance(value, Path):
            return value
        if isinstance(value, str):
            if not value.strip():
                return None
            return Path(value).expanduser()
        return value

    @property
    def effective_bucket_capacity(self) -> int:
        """Burst allowance; defaults to one second worth of requests."""

        if self.bucket_capacity is not None:
            return self.bucket_capacity
        return max(1, int(self.rps))

    @property
    def effective_max_pending_pages(self) -> int:
        """Number of pages dispatched per driver wave."""

        if self.max_pending_pages is not None:
            return self.max_pending_pages
        return self.concurrency * 2

    def cars_url(self, page: int) -> str:
        """Return the upstream listing URL for the requested page."""

        return f"{self.api_base_url}/cars?page={page}&per_page={self.page_size}"


def apply_yaml_overrides(settings: GlobalSettings, overrides: dict[str, Any]) -> GlobalSettings:
    """Apply YAML tuning values for fields not already set by the environment."""

    unknown = sorted(key for key in overrides if key not in GlobalSettings.model_fields)
    if unknown:
        logger.warning("Ignoring unknown configuration keys: %s", ", ".join(unknown))

    updates = {
        key: value
        for key, value in overrides.items()
        if key in GlobalSettings.model_fields and key not in settings.model_fields_set
    }
    if not updates:
        return settings

    merged = settings.model_dump()
    merged.update(updates)
    try:
        return GlobalSettings(**merged)
    except PydanticValidationError as exc:
        raise ConfigurationError(f"Configuration validation failed: {exc}") from exc


def ensure_runtime_configuration(settings: GlobalSettings | None = None) -> GlobalSettings:
    """Validate that the required environment variables are present."""

    settings = settings or get_settings()

    values = {
        "SUPABASE_URL": settings.supabase_url,
        "SUPABASE_SERVICE_ROLE_KEY": settings.supabase_service_role_key,
        "API_BASE_URL": settings.api_base_url,
        "API_KEY": settings.api_key,
    }
    missing = [name for name in REQUIRED_ENV if not values.get(name)]

    if missing:
        joined = ", ".join(missing)
        raise ConfigurationError(
            "Missing required environment variables: "
            f"{joined}. Configure them via the environment or a .env file."
        )

    if settings.checkpoint_backend == "database" and not settings.database_url:
        raise ConfigurationError("CHECKPOINT_BACKEND=database requires DATABASE_URL to be set")

    return settings


def _build_settings() -> GlobalSettings:
    try:
        settings = GlobalSettings()
    except PydanticValidationError as exc:
        raise ConfigurationError(f"Configuration validation failed: {exc}") from exc

    if settings.sync_config_file is not None:
        settings = apply_yaml_overrides(settings, load_yaml_config(settings.sync_config_file))
    return settings


@lru_cache(maxsize=1)
def _get_settings_cached() -> GlobalSettings:
    return _build_settings()


def get_settings(*, reload: bool = False) -> GlobalSettings:
    """Return cached settings, optionally forcing a reload."""

    if reload:
        _get_settings_cached.cache_clear()
    return _get_settings_cached()

