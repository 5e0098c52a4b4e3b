"""
Data store contract and an in-memory implementation.

In production this is backed by the hosted relational database. The
in-memory store enforces the hardened write constraint: no two active
bookings in the same professional lane may overlap on the same date, so a
booking that slips past the application-level check still cannot be
written.
"""

import logging
from abc import ABC, abstractmethod
from datetime import date
from typing import Optional

from agenda.config import settings
from agenda.errors import DuplicateSlotError
from agenda.schemas.booking_schema import Booking, BookingStatus
from agenda.schemas.calendar_schema import BlockedInterval, BusinessPolicy, DateException
from agenda.scheduling.conflicts import Interval

logger = logging.getLogger(__name__)


class BookingStore(ABC):
    """Reads and writes consumed by the booking service."""

    @abstractmethod
    async def get_business_policy(self) -> BusinessPolicy: ...

    @abstractmethod
    async def get_booked_intervals(
        self, day: date, professional_id: Optional[str]
    ) -> list[Booking]:
        """Non-cancelled bookings for one professional lane on one date."""

    @abstractmethod
    async def get_blocked_intervals(self, day: date) -> list[BlockedInterval]: ...

    @abstractmethod
    async def get_date_exceptions(self, day: date) -> list[DateException]: ...

    @abstractmethod
    async def get_booking(self, booking_id: str) -> Optional[Booking]: ...

    @abstractmethod
    async def insert_booking(self, booking: Booking) -> Booking: ...

    @abstractmethod
    async def update_booking(self, booking: Booking) -> Booking: ...

    @abstractmethod
    async def list_connected_professionals(self) -> list[str]:
        """Professionals with an external calendar connected."""

    @abstractmethod
    async def list_bookings_for_reminder(self, day: date) -> list[Booking]: ...

    @abstractmethod
    async def mark_reminder_sent(self, booking_id: str) -> None: ...


class InMemoryBookingStore(BookingStore):
    """Process-local store used by tests and local development."""

    def __init__(self, policy: Optional[BusinessPolicy] = None) -> None:
        self._policy = policy or BusinessPolicy.from_config(settings)
        self._bookings: dict[str, Booking] = {}
        self._blocks: list[BlockedInterval] = []
        self._exceptions: list[DateException] = []
        self._professionals: set[str] = set()

    # ------------------------------------------------------------------ #
    # Seeding helpers
    # ------------------------------------------------------------------ #

    def set_policy(self, policy: BusinessPolicy) -> None:
        self._policy = policy

    def add_block(self, block: BlockedInterval) -> None:
        self._blocks.append(block)

    def add_exception(self, exception: DateException) -> None:
        self._exceptions.append(exception)

    def connect_professional(self, professional_id: str) -> None:
        self._professionals.add(professional_id)

    def all_bookings(self) -> list[Booking]:
        """Every stored booking, cancelled ones included."""
        return [b.model_copy() for b in self._bookings.values()]

    def reset(self) -> None:
        """Clear all data. Used by test fixtures for isolation."""
        self._bookings.clear()
        self._blocks.clear()
        self._exceptions.clear()
        self._professionals.clear()

    # ------------------------------------------------------------------ #
    # BookingStore
    # ------------------------------------------------------------------ #

    async def get_business_policy(self) -> BusinessPolicy:
        return self._policy

    async def get_booked_intervals(
        self, day: date, professional_id: Optional[str]
    ) -> list[Booking]:
        return [
            b.model_copy()
            for b in self._bookings.values()
            if b.is_active
            and b.booking_date == day
            and b.responsible_professional_id == professional_id
        ]

    async def get_blocked_intervals(self, day: date) -> list[BlockedInterval]:
        return [b for b in self._blocks if b.blocked_date == day]

    async def get_date_exceptions(self, day: date) -> list[DateException]:
        return [e for e in self._exceptions if e.exception_date == day]

    async def get_booking(self, booking_id: str) -> Optional[Booking]:
        booking = self._bookings.get(booking_id)
        return booking.model_copy() if booking else None

    async def insert_booking(self, booking: Booking) -> Booking:
        if booking.id in self._bookings:
            raise DuplicateSlotError(f"Booking {booking.id} already exists")
        self._check_overlap(booking)
        self._bookings[booking.id] = booking.model_copy()
        logger.debug("Stored booking %s", booking.id)
        return booking.model_copy()

    async def update_booking(self, booking: Booking) -> Booking:
        if booking.id not in self._bookings:
            raise KeyError(f"Booking {booking.id} not found")
        self._check_overlap(booking)
        self._bookings[booking.id] = booking.model_copy()
        return booking.model_copy()

    async def list_connected_professionals(self) -> list[str]:
        return sorted(self._professionals)

    async def list_bookings_for_reminder(self, day: date) -> list[Booking]:
        return [
            b.model_copy()
            for b in self._bookings.values()
            if b.booking_date == day
            and b.status == BookingStatus.CONFIRMED
            and not b.reminder_sent
        ]

    async def mark_reminder_sent(self, booking_id: str) -> None:
        booking = self._bookings[booking_id]
        self._bookings[booking_id] = booking.model_copy(update={"reminder_sent": True})

    def _check_overlap(self, booking: Booking) -> None:
        """Exclusion constraint on (professional, date, [start, end))."""
        if not booking.is_active:
            return
        candidate = Interval.from_times(booking.start_time, booking.end_time)
        for other in self._bookings.values():
            if (
                other.id != booking.id
                and other.is_active
                and other.booking_date == booking.booking_date
                and other.responsible_professional_id == booking.responsible_professional_id
                and candidate.overlaps(Interval.from_times(other.start_time, other.end_time))
            ):
                raise DuplicateSlotError(
                    f"Booking {booking.id} overlaps {other.id} on {booking.booking_date}"
                )
