from pathlib import Path
import logging

from croniter import croniter
from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


logger = logging.getLogger(__name__)


class CustomSettings(BaseSettings):
    """Application settings loaded from environment variables.

    Validates configuration at startup to catch misconfiguration early.
    """

    database_path: str = "./data/epg_sync.db"
    log_level: str = "INFO"
    epg_sync_interval_sec: int = 43200  # Every 12 hours
    epg_sync_misfire_grace_sec: int = 3600  # Allow 1 hour to run missed syncs
    epg_periodic_window_hours: int = 48
    epg_immediate_window_hours: int = 1
    epg_cleanup_cron: str = "30 3 * * *"  # Daily at 3:30 AM
    max_epg_depth: int = 1  # Days to keep programs after they end
    epg_sample_input_id: str | None = None  # Registers the sample source when set

    sqlite_journal_mode: str = "WAL"
    sqlite_default_cache_size_kb: int = 64000

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("database_path")
    @classmethod
    def validate_database_path(cls, value: str) -> str:
        """Validate database path is accessible."""
        path = Path(value)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            return value
        except (OSError, PermissionError) as exc:
            raise ValueError(f"Cannot access database path '{value}': {exc}") from exc

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        normalized = value.upper()
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if normalized not in allowed:
            raise ValueError(f"log_level must be one of {sorted(allowed)}")
        return normalized

    @field_validator("epg_sync_interval_sec", "epg_periodic_window_hours", "epg_immediate_window_hours")
    @classmethod
    def validate_positive_ints(cls, value: int, info) -> int:
        """Ensure periods and windows are positive."""
        if value <= 0:
            raise ValueError(f"{info.field_name} must be > 0")
        return value

    @field_validator("epg_sync_misfire_grace_sec")
    @classmethod
    def validate_misfire_grace(cls, value: int) -> int:
        """Validate scheduler misfire grace period (seconds)."""
        if value < 0:
            raise ValueError("epg_sync_misfire_grace_sec must be >= 0")
        return value

    @field_validator("max_epg_depth")
    @classmethod
    def validate_day_range(cls, value: int, info) -> int:
        """Validate day range values are non-negative and reasonable."""
        if value < 0:
            raise ValueError(f"{info.field_name} must be >= 0")
        if value > 365:
            raise ValueError(f"{info.field_name} must be <= 365 days")
        return value

    @field_validator("sqlite_default_cache_size_kb")
    @classmethod
    def validate_cache_size(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("sqlite_default_cache_size_kb must be > 0")
        return value

    @field_validator("sqlite_journal_mode")
    @classmethod
    def validate_journal_mode(cls, value: str) -> str:
        """Validate SQLite journal mode."""
        normalized = value.upper()
        allowed = {"DELETE", "TRUNCATE", "PERSIST", "MEMORY", "WAL", "OFF"}
        if normalized not in allowed:
            raise ValueError(f"sqlite_journal_mode must be one of {sorted(allowed)}")
        return normalized

    @field_validator("epg_cleanup_cron")
    @classmethod
    def validate_cron_expression(cls, value: str) -> str:
        """Validate cron expression is valid."""
        try:
            croniter(value)
            return value
        except (ValueError, KeyError) as exc:
            raise ValueError(f"Invalid cron expression '{value}': {exc}") from exc

    @field_validator("epg_sample_input_id", mode="before")
    @classmethod
    def parse_sample_input_id(cls, value):
        """Treat blank values as unset."""
        if isinstance(value, str) and not value.strip():
            return None
        return value.strip() if isinstance(value, str) else value

    @model_validator(mode="after")
    def validate_sync_configuration(self):
        """Validate cross-field configuration."""
        if self.epg_periodic_window_hours * 3600 < self.epg_sync_interval_sec:
            logger.warning(
                "Periodic sync window (%sh) is shorter than the sync interval (%ss) - "
                "the guide will have gaps between syncs",
                self.epg_periodic_window_hours,
                self.epg_sync_interval_sec,
            )
        return self

    def __init__(self, **data):
        """Initialize settings and log configuration."""
        super().__init__(**data)

        logger.info("Configuration loaded:")
        logger.info("  Database: %s", self.database_path)
        logger.info("  Sync Interval: %ss", self.epg_sync_interval_sec)
        logger.info("  Sync Misfire Grace: %ss", self.epg_sync_misfire_grace_sec)
        logger.info("  Periodic Window: %s hours", self.epg_periodic_window_hours)
        logger.info("  Immediate Window: %s hours", self.epg_immediate_window_hours)
        logger.info("  Cleanup Schedule: %s", self.epg_cleanup_cron)
        logger.info("  Archive Depth: %s days", self.max_epg_depth)
        logger.info("  Sample Input: %s", self.epg_sample_input_id or "disabled")
        logger.info("  SQLite Journal Mode: %s", self.sqlite_journal_mode)


settings = CustomSettings()


def setup_logging() -> None:
    """Configure application logging."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
