"""
Centralized configuration with environment variable overrides.

Business defaults (opening hours, recurring days off, the restricted
category marker) and scheduling thresholds live here. The resolver never
reads these directly: they seed a BusinessPolicy that is passed in at
call time.
"""

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime

import pytz
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

WEEKDAY_NAMES = (
    "sunday", "monday", "tuesday", "wednesday", "thursday", "friday", "saturday",
)


def _safe_int(env_var: str, default: str) -> int:
    """Parse an integer from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return int(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid integer for {env_var}: {raw!r}"
        ) from None


def _safe_float(env_var: str, default: str) -> float:
    """Parse a float from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return float(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid float for {env_var}: {raw!r}"
        ) from None


def _csv(env_var: str, default: str) -> tuple[str, ...]:
    raw = os.getenv(env_var, default)
    return tuple(part.strip().lower() for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class BusinessConfig:
    """Business-specific settings loaded from environment or defaults."""

    name: str = os.getenv("BUSINESS_NAME", "Estúdio de Beleza")
    timezone: str = os.getenv("BUSINESS_TIMEZONE", "Europe/Lisbon")
    admin_email: str = os.getenv("ADMIN_NOTIFICATION_EMAIL", "")
    recurring_days_off: tuple[str, ...] = _csv("RECURRING_DAYS_OFF", "sunday,monday")
    working_hours_start: str = os.getenv("WORKING_HOURS_START", "10:00")
    working_hours_end: str = os.getenv("WORKING_HOURS_END", "18:30")
    restricted_hours_start: str = os.getenv("RESTRICTED_HOURS_START", "09:00")
    restricted_hours_end: str = os.getenv("RESTRICTED_HOURS_END", "19:00")
    restricted_category_marker: str = os.getenv("RESTRICTED_CATEGORY_MARKER", "laser")


@dataclass(frozen=True)
class SchedulingConfig:
    """Slot generation, protection window, and data access thresholds."""

    slot_stride_minutes: int = _safe_int("SLOT_STRIDE_MINUTES", "30")
    change_window_hours: int = _safe_int("CHANGE_WINDOW_HOURS", "24")
    restricted_horizon_months: int = _safe_int("RESTRICTED_HORIZON_MONTHS", "6")
    min_service_duration: int = _safe_int("MIN_SERVICE_DURATION", "5")
    data_fetch_timeout_sec: float = _safe_float("DATA_FETCH_TIMEOUT", "5.0")


@dataclass(frozen=True)
class NotificationConfig:
    """Outbound notification settings."""

    timeout_sec: float = _safe_float("NOTIFICATION_TIMEOUT", "10.0")
    client_bookings_url: str = os.getenv("CLIENT_BOOKINGS_URL", "/minha-conta/marcacoes")


@dataclass(frozen=True)
class AppConfig:
    """Root configuration aggregating all sub-configs."""

    business: BusinessConfig = field(default_factory=BusinessConfig)
    scheduling: SchedulingConfig = field(default_factory=SchedulingConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    log_level: str = os.getenv("LOG_LEVEL", "INFO")


def _validate_hours(label: str, start: str, end: str) -> None:
    try:
        parsed_start = datetime.strptime(start, "%H:%M")
        parsed_end = datetime.strptime(end, "%H:%M")
    except ValueError:
        raise ValueError(f"{label} must be HH:MM, got {start!r}-{end!r}") from None
    if parsed_start >= parsed_end:
        raise ValueError(f"{label} start must be before end, got {start}-{end}")


def _validate_config(config: AppConfig) -> None:
    """Validate configuration values are within acceptable ranges."""
    business = config.business
    scheduling = config.scheduling

    if business.timezone not in pytz.all_timezones_set:
        raise ValueError(f"BUSINESS_TIMEZONE is not a known timezone: {business.timezone!r}")

    unknown = [day for day in business.recurring_days_off if day not in WEEKDAY_NAMES]
    if unknown:
        raise ValueError(f"RECURRING_DAYS_OFF has unknown weekday names: {unknown}")

    _validate_hours("WORKING_HOURS", business.working_hours_start, business.working_hours_end)
    _validate_hours(
        "RESTRICTED_HOURS", business.restricted_hours_start, business.restricted_hours_end
    )

    if not business.restricted_category_marker:
        raise ValueError("RESTRICTED_CATEGORY_MARKER must not be empty")
    if scheduling.slot_stride_minutes < 1:
        raise ValueError(
            f"SLOT_STRIDE_MINUTES must be >= 1, got {scheduling.slot_stride_minutes}"
        )
    if scheduling.change_window_hours < 0:
        raise ValueError(
            f"CHANGE_WINDOW_HOURS must be >= 0, got {scheduling.change_window_hours}"
        )
    if scheduling.restricted_horizon_months < 1:
        raise ValueError(
            "RESTRICTED_HORIZON_MONTHS must be >= 1, "
            f"got {scheduling.restricted_horizon_months}"
        )
    if scheduling.min_service_duration < 1:
        raise ValueError(
            f"MIN_SERVICE_DURATION must be >= 1, got {scheduling.min_service_duration}"
        )
    if scheduling.data_fetch_timeout_sec <= 0:
        raise ValueError(
            f"DATA_FETCH_TIMEOUT must be > 0, got {scheduling.data_fetch_timeout_sec}"
        )
    if config.notifications.timeout_sec <= 0:
        raise ValueError(
            f"NOTIFICATION_TIMEOUT must be > 0, got {config.notifications.timeout_sec}"
        )


def load_config() -> AppConfig:
    """Load and validate application configuration."""
    config = AppConfig()
    _validate_config(config)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logger.info("Configuration loaded for '%s'", config.business.name)
    return config


# Singleton instance
settings = load_config()
