"""
Post-commit notification fan-out.

Email, push, and external calendar sync are external collaborators. Only
their interfaces live here. Dispatch happens after the booking is written
and channels run concurrently, each isolated and time-limited: a failing
or slow channel is logged and never rolls back or blocks the booking.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, time
from enum import Enum
from typing import Awaitable, Optional

from agenda.config import AppConfig, settings
from agenda.logging_context import get_request_logger
from agenda.schemas.booking_schema import Booking
from agenda.utils import format_duration, format_time

logger = get_request_logger(__name__)


class EventKind(str, Enum):
    CREATED = "created"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"
    REMINDER = "reminder"


@dataclass
class BookingEvent:
    """Something that happened to a booking and should be announced."""
    kind: EventKind
    booking: Booking
    by_admin: bool = False
    previous_date: Optional[date] = None
    previous_start: Optional[time] = None


class EmailDispatcher(ABC):
    @abstractmethod
    async def send(self, to: str, subject: str, body: str) -> None: ...


class PushDispatcher(ABC):
    @abstractmethod
    async def send_to_phone(
        self, phone: str, title: str, body: str, url: str, tag: str
    ) -> None:
        """Deliver to every device subscription registered for the phone."""


class CalendarSync(ABC):
    @abstractmethod
    async def upsert_event(self, professional_id: str, booking: Booking) -> None: ...

    @abstractmethod
    async def delete_event(self, professional_id: str, booking: Booking) -> None: ...


TITLES: dict[EventKind, str] = {
    EventKind.CREATED: "Marcação Confirmada",
    EventKind.CANCELLED: "Marcação Cancelada",
    EventKind.RESCHEDULED: "Marcação Reagendada",
    EventKind.REMINDER: "Lembrete de Marcação",
}


def build_message(event: BookingEvent) -> str:
    """Client-facing message text for an event."""
    b = event.booking
    when = f"{b.booking_date.strftime('%d/%m/%Y')} às {format_time(b.start_time)}"
    if event.kind == EventKind.CREATED:
        return (
            f"A sua marcação de {b.service_name} ({format_duration(b.service_duration)}) "
            f"está confirmada para {when}."
        )
    if event.kind == EventKind.CANCELLED:
        who = "pelo estabelecimento" if event.by_admin else "a seu pedido"
        return f"A sua marcação de {b.service_name} em {when} foi cancelada {who}."
    if event.kind == EventKind.RESCHEDULED and event.previous_date and event.previous_start:
        before = (
            f"{event.previous_date.strftime('%d/%m/%Y')} às {format_time(event.previous_start)}"
        )
        return f"A sua marcação de {b.service_name} foi alterada de {before} para {when}."
    if event.kind == EventKind.RESCHEDULED:
        return f"A sua marcação de {b.service_name} foi alterada para {when}."
    return f"Lembrete: tem uma marcação de {b.service_name} amanhã, {when}."


def resolve_calendar_owner(booking: Booking, connected: list[str]) -> Optional[str]:
    """Professional whose calendar receives the event.

    The booking's responsible professional when assigned. Unassigned
    bookings go to the connected professional with the lowest id, so the
    choice does not depend on row order.
    """
    if booking.responsible_professional_id:
        return booking.responsible_professional_id
    return min(connected) if connected else None


class NotificationDispatcher:
    """Fans a BookingEvent out to the configured channels."""

    def __init__(
        self,
        email: Optional[EmailDispatcher] = None,
        push: Optional[PushDispatcher] = None,
        calendar: Optional[CalendarSync] = None,
        config: AppConfig = settings,
    ) -> None:
        self.email = email
        self.push = push
        self.calendar = calendar
        self._config = config

    async def dispatch(
        self, event: BookingEvent, connected_professionals: Optional[list[str]] = None
    ) -> list[str]:
        """Send the event everywhere it applies. Returns the channels that failed."""
        booking = event.booking
        title = TITLES[event.kind]
        body = build_message(event)
        calls: list[tuple[str, Awaitable[None]]] = []

        if self.email is not None:
            if booking.client_email:
                calls.append(("email:client", self.email.send(booking.client_email, title, body)))
            admin_email = self._config.business.admin_email
            if admin_email and event.kind != EventKind.REMINDER:
                admin_body = f"{booking.client_name} ({booking.client_phone}): {body}"
                calls.append(("email:admin", self.email.send(admin_email, title, admin_body)))

        if self.push is not None:
            calls.append((
                "push",
                self.push.send_to_phone(
                    booking.client_phone,
                    title,
                    body,
                    self._config.notifications.client_bookings_url,
                    f"{event.kind.value}-{booking.id}",
                ),
            ))

        if self.calendar is not None and event.kind != EventKind.REMINDER:
            owner = resolve_calendar_owner(booking, connected_professionals or [])
            if owner is None:
                logger.info("No connected calendar for booking %s", booking.id)
            elif event.kind == EventKind.CANCELLED:
                calls.append(("calendar", self.calendar.delete_event(owner, booking)))
            else:
                calls.append(("calendar", self.calendar.upsert_event(owner, booking)))

        delivered = await asyncio.gather(
            *(self._deliver(channel, call, booking.id) for channel, call in calls)
        )
        return [channel for (channel, _), ok in zip(calls, delivered) if not ok]

    async def _deliver(self, channel: str, call: Awaitable[None], booking_id: str) -> bool:
        try:
            await asyncio.wait_for(call, timeout=self._config.notifications.timeout_sec)
        except Exception:
            logger.exception("Notification via %s failed for booking %s", channel, booking_id)
            return False
        logger.debug("Notification via %s sent for booking %s", channel, booking_id)
        return True
