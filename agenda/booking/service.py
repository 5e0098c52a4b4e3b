"""
Authoritative booking service: create, cancel, reschedule, correct client info.

Every mutating operation runs as one decision per professional lane:
acquire the lane lock, read current bookings/blocks/exceptions/policy,
evaluate guards with the shared resolver, write. The store's own overlap
constraint is the final arbiter. Reads that fail or time out abort the
operation before anything is written (fail closed).

Notifications are scheduled as background tasks after the lock is released.
The operation returns without waiting for them, and they can never undo a
committed change.
"""

import asyncio
import uuid
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Awaitable, Callable, Optional, TypeVar

from agenda.booking.notifications import BookingEvent, EventKind, NotificationDispatcher
from agenda.booking.state_machine import BookingStateMachine, BookingTrigger, InvalidTransitionError
from agenda.booking.store import BookingStore
from agenda.config import AppConfig, settings
from agenda.errors import (
    BookingRejection,
    DataStoreUnavailable,
    DuplicateSlotError,
    RejectionReason,
)
from agenda.logging_context import get_request_logger, new_request_id
from agenda.schemas.booking_schema import (
    Actor,
    Booking,
    BookingRequest,
    ClientIdentity,
)
from agenda.schemas.calendar_schema import BusinessPolicy
from agenda.schemas.catalog_schema import ServiceOffering
from agenda.scheduling.calendar_rules import CalendarRuleEngine
from agenda.scheduling.conflicts import end_time_for
from agenda.scheduling.resolver import AvailabilityResolver, DayContext
from agenda.utils import business_now, is_valid_mobile_phone, localize, normalize_phone

logger = get_request_logger(__name__)

T = TypeVar("T")


@dataclass
class BookingResult:
    """Outcome of a booking operation: the booking, or a typed rejection."""
    success: bool
    booking: Optional[Booking] = None
    rejection: Optional[BookingRejection] = None

    @property
    def reason(self) -> Optional[RejectionReason]:
        return self.rejection.reason if self.rejection else None

    @property
    def message(self) -> str:
        return self.rejection.message if self.rejection else ""

    @classmethod
    def ok(cls, booking: Booking) -> "BookingResult":
        return cls(success=True, booking=booking)

    @classmethod
    def rejected(cls, reason: RejectionReason, message: str) -> "BookingResult":
        return cls(success=False, rejection=BookingRejection(reason, message))


def _new_booking_id() -> str:
    return f"BK-{uuid.uuid4().hex[:8].upper()}"


def _service_from_booking(booking: Booking) -> ServiceOffering:
    """The service snapshot a booking was made for."""
    return ServiceOffering(
        id=booking.service_name,
        name=booking.service_name,
        duration_minutes=booking.service_duration,
        category_slug=booking.category_slug,
        responsible_professional_id=booking.responsible_professional_id,
    )


class BookingService:
    """Server-side booking handler over a BookingStore."""

    def __init__(
        self,
        store: BookingStore,
        notifier: Optional[NotificationDispatcher] = None,
        clock: Optional[Callable[[], datetime]] = None,
        config: AppConfig = settings,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._config = config
        self._clock = clock or (lambda: business_now(config.business.timezone))
        self._lane_locks: dict[Optional[str], asyncio.Lock] = {}
        self._pending: set[asyncio.Task] = set()

    # ------------------------------------------------------------------ #
    # Read side
    # ------------------------------------------------------------------ #

    async def is_date_bookable(
        self, day: date, category_slug: str, professional_id: Optional[str] = None
    ) -> bool:
        policy, ctx = await self._load_day(day, professional_id)
        return CalendarRuleEngine(policy).is_date_bookable(
            day,
            category_slug,
            today=self._clock().date(),
            blocks=ctx.blocks,
            exceptions=ctx.exceptions,
            professional_id=professional_id,
        )

    async def list_bookable_slots(self, day: date, service: ServiceOffering) -> list[time]:
        """Free start times for the service on ``day``, possibly empty."""
        policy, ctx = await self._load_day(day, service.responsible_professional_id)
        return self._resolver(policy).list_bookable_slots(
            ctx, service, today=self._clock().date()
        )

    # ------------------------------------------------------------------ #
    # Create
    # ------------------------------------------------------------------ #

    async def validate_and_reserve(self, request: BookingRequest, actor: Actor) -> BookingResult:
        """Re-validate a proposed booking against live data and commit it."""
        new_request_id()
        rejection = self._check_request(request, actor)
        if rejection is not None:
            return self._reject(rejection, "create")

        service = request.service
        professional_id = service.responsible_professional_id
        async with self._lane_lock(professional_id):
            policy, ctx = await self._load_day(request.booking_date, professional_id)
            rejection = self._resolver(policy).evaluate(
                ctx, service, request.start_time, today=self._clock().date()
            )
            if rejection is not None:
                return self._reject(rejection, "create")

            state = BookingStateMachine()
            state.transition(BookingTrigger.CONFIRM)
            booking = Booking(
                id=_new_booking_id(),
                service_name=service.name,
                service_duration=service.duration_minutes,
                category_slug=service.category_slug,
                booking_date=request.booking_date,
                start_time=request.start_time,
                end_time=end_time_for(request.start_time, service.duration_minutes),
                client_name=request.client.name,
                client_phone=normalize_phone(request.client.phone),
                client_email=request.client.email,
                responsible_professional_id=professional_id,
                status=state.current_state,
            )
            try:
                booking = await self._write(self._store.insert_booking(booking))
            except DuplicateSlotError:
                return self._reject(self._taken(), "create")

        logger.info(
            "Booking created: %s for %s on %s at %s",
            booking.id, booking.client_phone, booking.booking_date, booking.start_time,
        )
        self._notify(BookingEvent(EventKind.CREATED, booking, by_admin=actor.is_admin))
        return BookingResult.ok(booking)

    # ------------------------------------------------------------------ #
    # Cancel
    # ------------------------------------------------------------------ #

    async def cancel(self, booking_id: str, actor: Actor) -> BookingResult:
        """Cancel a booking. Clients must do so outside the change window."""
        new_request_id()
        existing = await self._read(self._store.get_booking(booking_id))
        if existing is None:
            return self._not_found(booking_id)

        async with self._lane_lock(existing.responsible_professional_id):
            booking = await self._read(self._store.get_booking(booking_id))
            if booking is None:
                return self._not_found(booking_id)

            rejection = self._check_owner(booking, actor)
            if rejection is not None:
                return self._reject(rejection, "cancel")

            state = BookingStateMachine(booking.status)
            try:
                state.transition(BookingTrigger.CANCEL)
            except InvalidTransitionError:
                return self._reject(self._inactive(), "cancel")

            if not actor.is_admin and not self._outside_change_window(
                booking.booking_date, booking.start_time
            ):
                return self._reject(
                    BookingRejection(
                        RejectionReason.CHANGE_WINDOW_CLOSED,
                        "Cancelamento não permitido a menos de "
                        f"{self._config.scheduling.change_window_hours}h do serviço.",
                    ),
                    "cancel",
                )

            booking = await self._write(
                self._store.update_booking(booking.model_copy(update={"status": state.current_state}))
            )

        logger.info("Booking cancelled: %s (admin: %s)", booking.id, actor.is_admin)
        self._notify(BookingEvent(EventKind.CANCELLED, booking, by_admin=actor.is_admin))
        return BookingResult.ok(booking)

    # ------------------------------------------------------------------ #
    # Reschedule
    # ------------------------------------------------------------------ #

    async def reschedule(
        self, booking_id: str, new_date: date, new_start: time, actor: Actor
    ) -> BookingResult:
        """Move a booking in place, keeping its id, client, and history.

        Clients need the original start and the new start to both be outside
        the change window. The booking's own interval never conflicts with
        itself.
        """
        new_request_id()
        existing = await self._read(self._store.get_booking(booking_id))
        if existing is None:
            return self._not_found(booking_id)

        professional_id = existing.responsible_professional_id
        async with self._lane_lock(professional_id):
            booking = await self._read(self._store.get_booking(booking_id))
            if booking is None:
                return self._not_found(booking_id)

            rejection = self._check_owner(booking, actor)
            if rejection is not None:
                return self._reject(rejection, "reschedule")

            state = BookingStateMachine(booking.status)
            try:
                state.transition(BookingTrigger.RESCHEDULE)
            except InvalidTransitionError:
                return self._reject(self._inactive(), "reschedule")

            if not actor.is_admin:
                hours = self._config.scheduling.change_window_hours
                if not self._outside_change_window(booking.booking_date, booking.start_time):
                    return self._reject(
                        BookingRejection(
                            RejectionReason.CHANGE_WINDOW_CLOSED,
                            f"Reagendamento não permitido a menos de {hours}h do serviço original.",
                        ),
                        "reschedule",
                    )
                if not self._outside_change_window(new_date, new_start):
                    return self._reject(
                        BookingRejection(
                            RejectionReason.CHANGE_WINDOW_CLOSED,
                            f"A nova data deve ser pelo menos {hours}h no futuro.",
                        ),
                        "reschedule",
                    )

            service = _service_from_booking(booking)
            policy, ctx = await self._load_day(new_date, professional_id)
            rejection = self._resolver(policy).evaluate(
                ctx,
                service,
                new_start,
                today=self._clock().date(),
                exclude_booking_id=booking.id,
            )
            if rejection is not None:
                return self._reject(rejection, "reschedule")

            previous_date, previous_start = booking.booking_date, booking.start_time
            moved = booking.model_copy(update={
                "booking_date": new_date,
                "start_time": new_start,
                "end_time": end_time_for(new_start, booking.service_duration),
                "status": state.current_state,
                "reminder_sent": False,
            })
            try:
                booking = await self._write(self._store.update_booking(moved))
            except DuplicateSlotError:
                return self._reject(self._taken(), "reschedule")

        logger.info(
            "Booking rescheduled: %s from %s %s to %s %s",
            booking.id, previous_date, previous_start, new_date, new_start,
        )
        self._notify(BookingEvent(
            EventKind.RESCHEDULED,
            booking,
            by_admin=actor.is_admin,
            previous_date=previous_date,
            previous_start=previous_start,
        ))
        return BookingResult.ok(booking)

    # ------------------------------------------------------------------ #
    # Client info correction (admin only)
    # ------------------------------------------------------------------ #

    async def update_client_info(
        self, booking_id: str, client: ClientIdentity, actor: Actor
    ) -> BookingResult:
        new_request_id()
        if not actor.is_admin:
            return self._reject(
                BookingRejection(
                    RejectionReason.PERMISSION_DENIED,
                    "Apenas administradores podem editar dados de cliente.",
                ),
                "update_client_info",
            )
        if not client.name or not client.phone:
            return self._reject(
                BookingRejection(RejectionReason.INVALID_INPUT, "Nome e telefone são obrigatórios."),
                "update_client_info",
            )

        booking = await self._read(self._store.get_booking(booking_id))
        if booking is None:
            return self._not_found(booking_id)

        async with self._lane_lock(booking.responsible_professional_id):
            booking = await self._write(self._store.update_booking(booking.model_copy(update={
                "client_name": client.name,
                "client_phone": normalize_phone(client.phone),
                "client_email": client.email,
            })))

        logger.info("Booking client info updated: %s", booking.id)
        return BookingResult.ok(booking)

    # ------------------------------------------------------------------ #
    # Guards
    # ------------------------------------------------------------------ #

    def _check_request(self, request: BookingRequest, actor: Actor) -> Optional[BookingRejection]:
        client = request.client
        if not client.name or not client.phone:
            return BookingRejection(RejectionReason.INVALID_INPUT, "Campos obrigatórios em falta.")

        minimum = self._config.scheduling.min_service_duration
        if request.service.duration_minutes < minimum:
            return BookingRejection(
                RejectionReason.INVALID_INPUT,
                f"A duração do serviço deve ser pelo menos {minimum} minutos.",
            )

        expected_end = end_time_for(request.start_time, request.service.duration_minutes)
        if request.end_time is not None and request.end_time != expected_end:
            return BookingRejection(
                RejectionReason.INVALID_INPUT,
                "A hora de fim não corresponde à duração do serviço.",
            )

        if actor.is_admin:
            return None

        if not is_valid_mobile_phone(client.phone):
            return BookingRejection(
                RejectionReason.INVALID_INPUT,
                "Número inválido. Use formato português (9XX XXX XXX).",
            )
        if actor.phone and normalize_phone(actor.phone) != normalize_phone(client.phone):
            return BookingRejection(
                RejectionReason.PERMISSION_DENIED,
                "O número de telefone não corresponde à sua conta.",
            )
        return None

    def _check_owner(self, booking: Booking, actor: Actor) -> Optional[BookingRejection]:
        """Clients may only act on bookings made with their own phone."""
        if actor.is_admin:
            return None
        if not actor.phone or normalize_phone(actor.phone) != normalize_phone(booking.client_phone):
            return BookingRejection(
                RejectionReason.PERMISSION_DENIED,
                "Sem permissão para alterar esta marcação.",
            )
        return None

    def _outside_change_window(self, day: date, start: time) -> bool:
        """True when ``day start`` is at least the change window away from now."""
        window = timedelta(hours=self._config.scheduling.change_window_hours)
        starts_at = localize(day, start, self._config.business.timezone)
        return starts_at >= self._clock() + window

    # ------------------------------------------------------------------ #
    # Data access
    # ------------------------------------------------------------------ #

    def _lane_lock(self, professional_id: Optional[str]) -> asyncio.Lock:
        """Writes are serialized per professional lane (None is its own lane)."""
        return self._lane_locks.setdefault(professional_id, asyncio.Lock())

    def _resolver(self, policy: BusinessPolicy) -> AvailabilityResolver:
        return AvailabilityResolver(CalendarRuleEngine(policy))

    async def _load_day(
        self, day: date, professional_id: Optional[str]
    ) -> tuple[BusinessPolicy, DayContext]:
        """Fetch everything the resolver needs for one date, concurrently."""
        policy, bookings, blocks, exceptions = await self._read(asyncio.gather(
            self._store.get_business_policy(),
            self._store.get_booked_intervals(day, professional_id),
            self._store.get_blocked_intervals(day),
            self._store.get_date_exceptions(day),
        ))
        return policy, DayContext(day=day, bookings=bookings, blocks=blocks, exceptions=exceptions)

    async def _read(self, call: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(
                call, timeout=self._config.scheduling.data_fetch_timeout_sec
            )
        except Exception as exc:
            logger.error("Data store read failed: %s", exc)
            raise DataStoreUnavailable("Could not read booking data") from exc

    async def _write(self, call: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(
                call, timeout=self._config.scheduling.data_fetch_timeout_sec
            )
        except DuplicateSlotError:
            logger.warning("Store rejected an overlapping write")
            raise
        except Exception as exc:
            logger.error("Data store write failed: %s", exc)
            raise DataStoreUnavailable("Could not write booking data") from exc

    def _notify(self, event: BookingEvent) -> None:
        if self._notifier is None:
            return
        task = asyncio.create_task(self._send(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _send(self, event: BookingEvent) -> None:
        try:
            connected = await self._store.list_connected_professionals()
            await self._notifier.dispatch(event, connected)
        except Exception:
            logger.exception("Notification dispatch failed for booking %s", event.booking.id)

    async def drain_notifications(self) -> None:
        """Wait for every notification scheduled so far, e.g. before shutdown."""
        while self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    # ------------------------------------------------------------------ #
    # Rejections
    # ------------------------------------------------------------------ #

    def _reject(self, rejection: BookingRejection, action: str) -> BookingResult:
        logger.warning("%s rejected (%s): %s", action, rejection.reason.value, rejection.message)
        return BookingResult.rejected(rejection.reason, rejection.message)

    def _not_found(self, booking_id: str) -> BookingResult:
        return self._reject(
            BookingRejection(RejectionReason.NOT_FOUND, f"Marcação {booking_id} não encontrada."),
            "lookup",
        )

    @staticmethod
    def _taken() -> BookingRejection:
        return BookingRejection(
            RejectionReason.SLOT_CONFLICT, "Este horário sobrepõe uma marcação já existente."
        )

    @staticmethod
    def _inactive() -> BookingRejection:
        return BookingRejection(RejectionReason.INVALID_INPUT, "A marcação já se encontra cancelada.")
