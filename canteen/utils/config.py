"""Environment-driven application settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[2]

DEFAULT_SLOTS: tuple[tuple[str, str, str, int], ...] = (
    ("Breakfast", "07:00", "09:00", 50),
    ("Lunch", "12:00", "14:00", 50),
    ("Snacks", "16:00", "17:30", 50),
    ("Dinner", "19:00", "21:00", 50),
)


def _env_str(name: str, default: str | None) -> str | None:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return int(value)


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return float(value)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    app_name: str
    app_version: str
    log_level: str
    database_path: Path
    database_timeout_seconds: float
    local_timezone: str

    admin_token: str | None
    staff_access_code: str | None
    student_access_code: str | None
    session_ttl_minutes: int

    queue_default_service_minutes: float
    queue_service_time_window_minutes: int

    analytics_default_days: int
    analytics_max_days: int
    analytics_peak_top_n: int
    analytics_peak_relative_threshold: float

    alert_auto_resolve: bool

    seed_default_catalog: bool
    seed_slots: tuple[tuple[str, str, str, int], ...]

    client_base_url: str
    client_timeout_seconds: float
    client_poll_interval_seconds: float


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build settings once per process from ``CANTEEN_*`` environment variables."""
    database_path = _env_str(
        "CANTEEN_DATABASE_PATH",
        str(PROJECT_ROOT / "data" / "canteen.db"),
    )
    return Settings(
        app_name=_env_str("CANTEEN_APP_NAME", "Canteen Token Queue"),
        app_version=_env_str("CANTEEN_APP_VERSION", "1.0.0"),
        log_level=_env_str("CANTEEN_LOG_LEVEL", "INFO"),
        database_path=Path(database_path),
        database_timeout_seconds=_env_float("CANTEEN_DATABASE_TIMEOUT_SECONDS", 5.0),
        local_timezone=_env_str("CANTEEN_TIMEZONE", "UTC"),
        admin_token=_env_str("ADMIN_TOKEN", None),
        staff_access_code=_env_str("STAFF_ACCESS_CODE", None),
        student_access_code=_env_str("STUDENT_ACCESS_CODE", None),
        session_ttl_minutes=_env_int("CANTEEN_SESSION_TTL_MINUTES", 480),
        queue_default_service_minutes=_env_float("CANTEEN_DEFAULT_SERVICE_MINUTES", 5.0),
        queue_service_time_window_minutes=_env_int("CANTEEN_SERVICE_TIME_WINDOW_MINUTES", 60),
        analytics_default_days=_env_int("CANTEEN_ANALYTICS_DEFAULT_DAYS", 7),
        analytics_max_days=_env_int("CANTEEN_ANALYTICS_MAX_DAYS", 90),
        analytics_peak_top_n=_env_int("CANTEEN_PEAK_TOP_N", 3),
        analytics_peak_relative_threshold=_env_float("CANTEEN_PEAK_RELATIVE_THRESHOLD", 0.8),
        alert_auto_resolve=_env_bool("CANTEEN_ALERT_AUTO_RESOLVE", False),
        seed_default_catalog=_env_bool("CANTEEN_SEED_DEFAULT_CATALOG", True),
        seed_slots=DEFAULT_SLOTS,
        client_base_url=_env_str("CANTEEN_API_BASE_URL", "http://127.0.0.1:8000"),
        client_timeout_seconds=_env_float("CANTEEN_CLIENT_TIMEOUT_SECONDS", 5.0),
        client_poll_interval_seconds=_env_float("CANTEEN_CLIENT_POLL_INTERVAL_SECONDS", 15.0),
    )
