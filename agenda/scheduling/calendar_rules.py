"""
Calendar rule engine: decides whether a date is open for a category.

Decision order, first match wins:
1. PAST                - before today in the business timezone
2. HOLIDAY             - national holiday, never reopened by exceptions
3. BLOCKED             - admin full-day block in scope
4. DAY_OFF             - recurring closure weekday with no matching exception
5. RESTRICTED_CATEGORY - restricted class outside the last weekend of a month

Usage:
    engine = CalendarRuleEngine(policy)
    engine.closure_reason(date(2025, 6, 28), "laser", today=date(2025, 6, 10))
"""

import calendar
import logging
from datetime import date, timedelta
from enum import Enum
from typing import Callable, Iterable, Optional

from agenda.schemas.calendar_schema import (
    BlockedInterval,
    BusinessPolicy,
    DateException,
    WorkingHours,
)
from agenda.scheduling.holidays import holiday_name
from agenda.utils import sunday_weekday

logger = logging.getLogger(__name__)


class ClosureReason(str, Enum):
    """Why a date is not bookable."""
    PAST = "past"
    HOLIDAY = "holiday"
    BLOCKED = "blocked"
    DAY_OFF = "day_off"
    RESTRICTED_CATEGORY = "restricted_category"


def last_weekend_of_month(year: int, month: int) -> tuple[date, date]:
    """(Saturday, Sunday) of the last weekend ending on or before the month's last day."""
    last_day = date(year, month, calendar.monthrange(year, month)[1])
    last_sunday = last_day - timedelta(days=sunday_weekday(last_day))
    return last_sunday - timedelta(days=1), last_sunday


class CalendarRuleEngine:
    """Pure date-level rules. All mutable data is passed in per call."""

    def __init__(
        self,
        policy: BusinessPolicy,
        holiday_lookup: Callable[[date], Optional[str]] = holiday_name,
    ) -> None:
        self.policy = policy
        self._holiday_lookup = holiday_lookup

    def is_restricted(self, category_slug: str) -> bool:
        return self.policy.restricted_marker in category_slug

    def working_hours(self, category_slug: str) -> WorkingHours:
        if self.is_restricted(category_slug):
            return self.policy.restricted_hours
        return self.policy.regular_hours

    def restricted_dates(self, today: date) -> set[date]:
        """Last-weekend days of this month and the following months in the horizon."""
        dates: set[date] = set()
        for offset in range(self.policy.restricted_horizon_months):
            month_index = today.month - 1 + offset
            year = today.year + month_index // 12
            dates.update(last_weekend_of_month(year, month_index % 12 + 1))
        return dates

    def closure_reason(
        self,
        day: date,
        category_slug: str,
        *,
        today: date,
        blocks: Iterable[BlockedInterval] = (),
        exceptions: Iterable[DateException] = (),
        professional_id: Optional[str] = None,
    ) -> Optional[ClosureReason]:
        """Return why ``day`` is closed for the category, or None when it is open."""
        reason = self._evaluate(day, category_slug, today, blocks, exceptions, professional_id)
        if reason is not None:
            logger.debug("%s closed for '%s': %s", day.isoformat(), category_slug, reason.value)
        return reason

    def is_date_bookable(
        self,
        day: date,
        category_slug: str,
        *,
        today: date,
        blocks: Iterable[BlockedInterval] = (),
        exceptions: Iterable[DateException] = (),
        professional_id: Optional[str] = None,
    ) -> bool:
        return self.closure_reason(
            day,
            category_slug,
            today=today,
            blocks=blocks,
            exceptions=exceptions,
            professional_id=professional_id,
        ) is None

    def _evaluate(
        self,
        day: date,
        category_slug: str,
        today: date,
        blocks: Iterable[BlockedInterval],
        exceptions: Iterable[DateException],
        professional_id: Optional[str],
    ) -> Optional[ClosureReason]:
        if day < today:
            return ClosureReason.PAST

        if self._holiday_lookup(day) is not None:
            return ClosureReason.HOLIDAY

        if any(
            block.is_full_day
            and block.blocked_date == day
            and block.applies_to(category_slug, professional_id)
            for block in blocks
        ):
            return ClosureReason.BLOCKED

        if sunday_weekday(day) in self.policy.recurring_closure_weekdays:
            reopened = any(
                exc.exception_date == day and exc.applies_to(category_slug)
                for exc in exceptions
            )
            if not reopened:
                return ClosureReason.DAY_OFF

        if self.is_restricted(category_slug) and day not in self.restricted_dates(today):
            return ClosureReason.RESTRICTED_CATEGORY

        return None
