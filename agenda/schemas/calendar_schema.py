"""Calendar policy data models: working hours, closures, exceptions, blocks."""

from datetime import date, time
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from agenda.config import WEEKDAY_NAMES, AppConfig
from agenda.utils import parse_time


class WorkingHours(BaseModel):
    """Opening window {start, end} for a category class."""
    start: time
    end: time

    @model_validator(mode="after")
    def _start_before_end(self) -> "WorkingHours":
        if self.start >= self.end:
            raise ValueError(f"working hours start {self.start} must be before end {self.end}")
        return self


class DateException(BaseModel):
    """Reopens a date that a recurring closure rule would keep closed."""
    id: Optional[str] = None
    exception_date: date
    category_slug: Optional[str] = None
    reason: Optional[str] = None

    def applies_to(self, category_slug: str) -> bool:
        return self.category_slug is None or self.category_slug == category_slug


class BlockedInterval(BaseModel):
    """Admin closure for one date: the full day or a [start, end) sub-interval."""
    id: Optional[str] = None
    blocked_date: date
    is_full_day: bool = False
    start: Optional[time] = None
    end: Optional[time] = None
    category_slug: Optional[str] = None
    professional_id: Optional[str] = None
    reason: Optional[str] = None

    @model_validator(mode="after")
    def _partial_needs_bounds(self) -> "BlockedInterval":
        if self.is_full_day:
            return self
        if self.start is None or self.end is None:
            raise ValueError("a partial block needs both start and end")
        if self.start >= self.end:
            raise ValueError(f"block start {self.start} must be before end {self.end}")
        return self

    def applies_to(self, category_slug: str, professional_id: Optional[str]) -> bool:
        category_ok = self.category_slug is None or self.category_slug == category_slug
        professional_ok = self.professional_id is None or self.professional_id == professional_id
        return category_ok and professional_ok


class BusinessPolicy(BaseModel):
    """
    Explicitly loaded business rules handed to the resolver.

    Recurring closures use 0=Sunday .. 6=Saturday. A category is in the
    restricted class when its slug contains ``restricted_marker``.
    """
    recurring_closure_weekdays: frozenset[int] = Field(default_factory=frozenset)
    regular_hours: WorkingHours
    restricted_hours: WorkingHours
    restricted_marker: str = "laser"
    restricted_horizon_months: int = Field(default=6, ge=1)
    slot_stride_minutes: int = Field(default=30, ge=1)

    @field_validator("recurring_closure_weekdays")
    @classmethod
    def _weekday_range(cls, value: frozenset[int]) -> frozenset[int]:
        bad = sorted(day for day in value if not 0 <= day <= 6)
        if bad:
            raise ValueError(f"weekday numbers must be 0..6, got {bad}")
        return value

    @classmethod
    def from_config(cls, config: AppConfig) -> "BusinessPolicy":
        business = config.business
        scheduling = config.scheduling
        return cls(
            recurring_closure_weekdays=frozenset(
                WEEKDAY_NAMES.index(name) for name in business.recurring_days_off
            ),
            regular_hours=WorkingHours(
                start=parse_time(business.working_hours_start),
                end=parse_time(business.working_hours_end),
            ),
            restricted_hours=WorkingHours(
                start=parse_time(business.restricted_hours_start),
                end=parse_time(business.restricted_hours_end),
            ),
            restricted_marker=business.restricted_category_marker,
            restricted_horizon_months=scheduling.restricted_horizon_months,
            slot_stride_minutes=scheduling.slot_stride_minutes,
        )
