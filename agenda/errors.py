"""
Rejection taxonomy and infrastructure failures.

Expected outcomes (closed date, taken slot, 24h rule, bad input, wrong
client) are returned as a BookingRejection so callers can branch on the
reason. Exceptions are only raised for failures the caller cannot remedy
by choosing differently.
"""

from dataclasses import dataclass
from enum import Enum


class RejectionReason(str, Enum):
    """Why a booking operation was refused."""
    DATE_CLOSED = "date_closed"
    SLOT_CONFLICT = "slot_conflict"
    CHANGE_WINDOW_CLOSED = "change_window_closed"
    INVALID_INPUT = "invalid_input"
    PERMISSION_DENIED = "permission_denied"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class BookingRejection:
    """A typed, user-presentable refusal."""
    reason: RejectionReason
    message: str


class BookingError(Exception):
    """Base class for booking infrastructure errors."""


class DataStoreUnavailable(BookingError):
    """A read or write against the data store failed or timed out."""


class DuplicateSlotError(BookingError):
    """The store's own constraint rejected an overlapping write."""
