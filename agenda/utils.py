"""Shared date, time, and phone utilities used across the booking core."""

import re
from datetime import date, datetime, time

import pytz

MINUTES_PER_DAY = 24 * 60

_MOBILE_PATTERN = re.compile(r"^(?:351)?9\d{8}$")


def normalize_phone(value: str) -> str:
    """Normalize a phone number by stripping everything except digits and a leading +.

    Examples:
        >>> normalize_phone("912 345 678")
        '912345678'
        >>> normalize_phone("+351 912-345-678")
        '+351912345678'
    """
    value = value.strip()
    if value.startswith("+"):
        return "+" + re.sub(r"[^\d]", "", value[1:])
    return re.sub(r"[^\d]", "", value)


def is_valid_mobile_phone(value: str) -> bool:
    """Portuguese mobile: nine digits starting with 9, optionally prefixed by 351."""
    digits = re.sub(r"[^\d]", "", value)
    return bool(_MOBILE_PATTERN.match(digits))


def parse_time(value: str) -> time:
    """Parse ``HH:MM`` (or ``HH:MM:SS`` as stored by the database) into a time."""
    text = value.strip()
    for fmt in ("%H:%M", "%H:%M:%S"):
        try:
            return datetime.strptime(text, fmt).time()
        except ValueError:
            continue
    raise ValueError(f"Invalid time {value!r}, expected HH:MM")


def format_time(value: time) -> str:
    return value.strftime("%H:%M")


def time_to_minutes(value: time) -> int:
    """Minutes elapsed since midnight."""
    return value.hour * 60 + value.minute


def minutes_to_time(minutes: int) -> time:
    """Inverse of time_to_minutes. Raises ValueError past the end of the day."""
    if not 0 <= minutes < MINUTES_PER_DAY:
        raise ValueError(f"{minutes} minutes is outside a single day")
    return time(minutes // 60, minutes % 60)


def sunday_weekday(day: date) -> int:
    """Weekday number with 0=Sunday .. 6=Saturday."""
    return (day.weekday() + 1) % 7


def format_duration(minutes: int) -> str:
    """Human duration: ``45min``, ``1h``, ``1h 30min``."""
    if minutes >= 60:
        hours, mins = divmod(minutes, 60)
        return f"{hours}h {mins}min" if mins else f"{hours}h"
    return f"{minutes}min"


def business_now(tz_name: str) -> datetime:
    """Current aware datetime in the business timezone."""
    return datetime.now(pytz.timezone(tz_name))


def localize(day: date, at: time, tz_name: str) -> datetime:
    """Combine a calendar date and wall-clock time into an aware datetime."""
    return pytz.timezone(tz_name).localize(datetime.combine(day, at))
