"""Runtime configuration for the recurrence engine."""
from dataclasses import dataclass, field
import os
from dotenv import load_dotenv

# Load environment variables from .env when present
load_dotenv()

DEFAULT_DATABASE_URL = "sqlite:///./recurrence_engine.db"


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    return int(value)


@dataclass
class Settings:
    """Settings read from the environment."""
    database_url: str = field(default_factory=lambda: os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL))
    interval_seconds: int = field(default_factory=lambda: _env_int("RECURRENCE_INTERVAL_SECONDS", 60 * 60))
    backfill_cap: int = field(default_factory=lambda: _env_int("RECURRENCE_BACKFILL_CAP", 1))
    run_on_start: bool = field(default_factory=lambda: _env_bool("RECURRENCE_RUN_ON_START", True))
    scheduler_enabled: bool = field(default_factory=lambda: _env_bool("RECURRENCE_SCHEDULER_ENABLED", True))
    log_level: str = field(default_factory=lambda: os.environ.get("LOG_LEVEL", "INFO").upper())


def get_settings() -> Settings:
    """Build settings from the current environment."""
    return Settings()
