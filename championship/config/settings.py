"""
championship/config/settings.py
Runtime configuration and feature flags.

All values are loaded from environment variables (a .env file at the
project root is honoured). Import the module-level ``settings`` and
``feature_flags`` singletons rather than reading os.environ directly.
"""
import os
from datetime import date
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(dotenv_path=PROJECT_ROOT / ".env")


def get_bool_env(key: str, default: bool = False) -> bool:
    """Get a boolean value from environment variable."""
    value = os.getenv(key, str(default)).lower()
    return value in ('true', '1', 'yes', 'on', 'enabled')


def get_int_env(key: str, default: int) -> int:
    """Get an integer value from environment variable."""
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    return int(value)


def get_optional_int_env(key: str, default: Optional[int]) -> Optional[int]:
    """Integer env var where 'none' (or an empty value) means unset."""
    value = os.getenv(key)
    if value is None:
        return default
    if value.strip().lower() in ("", "none", "null"):
        return None
    return int(value)


def get_date_env(key: str, default: date) -> date:
    value = os.getenv(key)
    if not value:
        return default
    return date.fromisoformat(value)


class Settings:
    """
    Engine settings.

    Score weights and caps are read by the score catalog through
    SCORE_WEIGHT_<CATEGORY> / SCORE_CAP_<CATEGORY> (category upper-cased,
    dashes replaced by underscores) and are not listed here.
    """

    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./championship.db")

    # Caller tokens are issued by the external auth service
    JWT_SECRET_KEY: str = os.getenv("JWT_SECRET_KEY", "dev-secret-key-change-in-production")
    JWT_ALGORITHM: str = os.getenv("JWT_ALGORITHM", "HS256")

    # Synchronization
    SYNC_TIMEOUT_SECONDS: int = get_int_env("SYNC_TIMEOUT_SECONDS", 30)
    SYNC_LEASE_SECONDS: int = get_int_env("SYNC_LEASE_SECONDS", 300)

    # Dashboards
    RECENT_ACTIVITY_DAYS: int = get_int_env("RECENT_ACTIVITY_DAYS", 30)
    RECENT_DEMERITS_LIMIT: int = get_int_env("RECENT_DEMERITS_LIMIT", 50)
    TOP_UNITS_LIMIT: int = get_int_env("TOP_UNITS_LIMIT", 5)

    # Goals
    GOAL_DEADLINE_REGULAR: date = get_date_env("GOAL_DEADLINE_REGULAR", date(2026, 6, 28))
    GOAL_DEADLINE_ADVANCED: date = get_date_env("GOAL_DEADLINE_ADVANCED", date(2026, 10, 25))
    GOAL_TARGET_SPECIALTIES: int = get_int_env("GOAL_TARGET_SPECIALTIES", 20)

    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")


class FeatureFlags:
    """Boolean switches read once from the environment at import time."""

    # Synchronize once before serving the first read of a championship
    # that has never been synchronized
    FEATURE_LAZY_SYNC_ON_READ: bool = get_bool_env('FEATURE_LAZY_SYNC_ON_READ', False)

    # Store and verify a SHA-256 checksum on every snapshot
    FEATURE_SNAPSHOT_CHECKSUM: bool = get_bool_env('FEATURE_SNAPSHOT_CHECKSUM', True)

    @classmethod
    def get_all_flags(cls) -> dict:
        """Get all feature flags as a dictionary."""
        return {
            key: value
            for key, value in cls.__dict__.items()
            if not key.startswith('_') and isinstance(value, bool)
        }


settings = Settings()
feature_flags = FeatureFlags()
