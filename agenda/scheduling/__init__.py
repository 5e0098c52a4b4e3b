from agenda.scheduling.calendar_rules import (
    CalendarRuleEngine,
    ClosureReason,
    last_weekend_of_month,
)
from agenda.scheduling.conflicts import Interval, busy_intervals, is_interval_free
from agenda.scheduling.resolver import AvailabilityResolver, DayContext
from agenda.scheduling.slots import generate_slots

__all__ = [
    "CalendarRuleEngine",
    "ClosureReason",
    "last_weekend_of_month",
    "Interval",
    "busy_intervals",
    "is_interval_free",
    "AvailabilityResolver",
    "DayContext",
    "generate_slots",
]
