"""
Slot generation: discrete candidate start times for a service.

Starting at the window start, a slot is emitted every ``stride_minutes``
while the whole service still fits before the window end. A service longer
than the window yields no slots, which is a valid "no availability" result.
"""

from datetime import time

from agenda.schemas.calendar_schema import WorkingHours
from agenda.utils import minutes_to_time, time_to_minutes

DEFAULT_STRIDE_MINUTES = 30


def generate_slots(
    duration_minutes: int,
    window: WorkingHours,
    stride_minutes: int = DEFAULT_STRIDE_MINUTES,
) -> list[time]:
    """Ordered start times T with window.start <= T and T + duration <= window.end."""
    if duration_minutes <= 0:
        raise ValueError(f"duration must be positive, got {duration_minutes}")
    if stride_minutes <= 0:
        raise ValueError(f"stride must be positive, got {stride_minutes}")

    start = time_to_minutes(window.start)
    end = time_to_minutes(window.end)
    return [
        minutes_to_time(minutes)
        for minutes in range(start, end - duration_minutes + 1, stride_minutes)
    ]
