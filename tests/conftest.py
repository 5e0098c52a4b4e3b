"""Shared test fixtures and helpers."""

import asyncio
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Optional

import pytest

from agenda.booking.notifications import CalendarSync, EmailDispatcher, PushDispatcher
from agenda.booking.service import BookingService
from agenda.booking.store import InMemoryBookingStore
from agenda.schemas.booking_schema import Booking, BookingStatus
from agenda.schemas.calendar_schema import BusinessPolicy, WorkingHours
from agenda.schemas.catalog_schema import ServiceOffering
from agenda.scheduling.calendar_rules import CalendarRuleEngine
from agenda.scheduling.resolver import AvailabilityResolver
from agenda.utils import localize

TZ = "Europe/Lisbon"

# Tuesday. National holiday (Dia de Portugal).
TODAY = date(2025, 6, 10)
# Thursday and Friday of the same week, both regular working days.
THURSDAY = date(2025, 6, 12)
FRIDAY = date(2025, 6, 13)
# Last weekend of June 2025.
LAST_SATURDAY = date(2025, 6, 28)
LAST_SUNDAY = date(2025, 6, 29)

CLIENT_PHONE = "912345678"
OTHER_PHONE = "935555111"


def make_policy(**overrides) -> BusinessPolicy:
    """Policy matching the default configuration, independent of env vars."""
    values = dict(
        recurring_closure_weekdays=frozenset({0, 1}),
        regular_hours=WorkingHours(start=time(10, 0), end=time(18, 30)),
        restricted_hours=WorkingHours(start=time(9, 0), end=time(19, 0)),
        restricted_marker="laser",
        restricted_horizon_months=6,
        slot_stride_minutes=30,
    )
    values.update(overrides)
    return BusinessPolicy(**values)


def make_service(
    duration: int = 60,
    category: str = "unhas",
    professional_id: Optional[str] = None,
    name: str = "Manicure",
) -> ServiceOffering:
    return ServiceOffering(
        id=f"svc-{name.lower()}",
        name=name,
        duration_minutes=duration,
        price=Decimal("25.00"),
        category_slug=category,
        responsible_professional_id=professional_id,
    )


def make_booking(
    booking_id: str = "BK-1",
    day: date = THURSDAY,
    start: time = time(14, 0),
    end: time = time(15, 0),
    professional_id: Optional[str] = None,
    status: BookingStatus = BookingStatus.CONFIRMED,
    phone: str = CLIENT_PHONE,
    email: Optional[str] = "maria@example.pt",
    category: str = "unhas",
) -> Booking:
    minutes = (end.hour * 60 + end.minute) - (start.hour * 60 + start.minute)
    return Booking(
        id=booking_id,
        service_name="Manicure",
        service_duration=minutes,
        category_slug=category,
        booking_date=day,
        start_time=start,
        end_time=end,
        client_name="Maria Silva",
        client_phone=phone,
        client_email=email,
        responsible_professional_id=professional_id,
        status=status,
    )


class FixedClock:
    """Controllable 'now' in the business timezone."""

    def __init__(self, day: date = TODAY, at: time = time(9, 0)) -> None:
        self.now = localize(day, at, TZ)

    def __call__(self) -> datetime:
        return self.now

    def set(self, day: date, at: time) -> None:
        self.now = localize(day, at, TZ)

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingEmail(EmailDispatcher):
    def __init__(self, fail: bool = False, delay: float = 0.0) -> None:
        self.sent: list[tuple[str, str]] = []
        self.fail = fail
        self.delay = delay

    async def send(self, to: str, subject: str, body: str) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ConnectionError("smtp down")
        self.sent.append((to, subject))


class RecordingPush(PushDispatcher):
    def __init__(self, delay: float = 0.0, fail: bool = False) -> None:
        self.sent: list[tuple[str, str]] = []
        self.delay = delay
        self.fail = fail

    async def send_to_phone(self, phone: str, title: str, body: str, url: str, tag: str) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ConnectionError("push service down")
        self.sent.append((phone, tag))


class RecordingCalendar(CalendarSync):
    def __init__(self) -> None:
        self.calls: list[tuple[str, str, str]] = []

    async def upsert_event(self, professional_id: str, booking: Booking) -> None:
        self.calls.append(("upsert", professional_id, booking.id))

    async def delete_event(self, professional_id: str, booking: Booking) -> None:
        self.calls.append(("delete", professional_id, booking.id))


@pytest.fixture
def policy():
    return make_policy()


@pytest.fixture
def engine(policy):
    return CalendarRuleEngine(policy)


@pytest.fixture
def resolver(engine):
    return AvailabilityResolver(engine)


@pytest.fixture
def store(policy):
    return InMemoryBookingStore(policy=policy)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def booking_service(store, clock):
    return BookingService(store, clock=clock)
