"""
Conflict checking over half-open [start, end) intervals.

This is the one overlap predicate used everywhere: when filtering slots for
display and when validating a booking right before commit. An appointment
ending at 10:00 does not conflict with one starting at 10:00.

Bookings are scoped per responsible professional. An unassigned booking
(professional None) lives in its own lane and only conflicts with other
unassigned bookings.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable, Optional

from agenda.schemas.booking_schema import Booking
from agenda.schemas.calendar_schema import BlockedInterval
from agenda.utils import time_to_minutes


@dataclass(frozen=True)
class Interval:
    """Half-open interval in minutes since midnight."""
    start: int
    end: int

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise ValueError(f"interval start {self.start} must be before end {self.end}")

    @classmethod
    def from_times(cls, start: time, end: time) -> "Interval":
        return cls(time_to_minutes(start), time_to_minutes(end))

    @classmethod
    def for_service(cls, start: time, duration_minutes: int) -> "Interval":
        begin = time_to_minutes(start)
        return cls(begin, begin + duration_minutes)

    def overlaps(self, other: "Interval") -> bool:
        return self.start < other.end and self.end > other.start

    def within(self, start: time, end: time) -> bool:
        return time_to_minutes(start) <= self.start and self.end <= time_to_minutes(end)


def is_interval_free(candidate: Interval, existing: Iterable[Interval]) -> bool:
    """True when the candidate overlaps none of the existing intervals."""
    return not any(candidate.overlaps(interval) for interval in existing)


def end_time_for(start: time, duration_minutes: int) -> time:
    """Wall-clock end of a service starting at ``start``."""
    return (datetime.combine(date.min, start) + timedelta(minutes=duration_minutes)).time()


def busy_intervals(
    bookings: Iterable[Booking],
    blocks: Iterable[BlockedInterval],
    *,
    category_slug: str,
    professional_id: Optional[str],
    exclude_booking_id: Optional[str] = None,
) -> list[Interval]:
    """Occupied intervals for one professional lane on one date.

    Non-cancelled bookings in the same lane (minus ``exclude_booking_id``,
    used by reschedule) plus partial blocks whose scope matches. Full-day
    blocks are handled by the calendar rule engine.
    """
    busy = [
        Interval.from_times(booking.start_time, booking.end_time)
        for booking in bookings
        if booking.is_active
        and booking.responsible_professional_id == professional_id
        and booking.id != exclude_booking_id
    ]
    busy.extend(
        Interval.from_times(block.start, block.end)
        for block in blocks
        if not block.is_full_day and block.applies_to(category_slug, professional_id)
    )
    return busy
