"""
Availability & conflict resolver.

Composes the calendar rule engine, the slot generator, and the conflict
checker over data already fetched for one date and professional lane. The
same resolver backs the optimistic slot listing and the authoritative
check made right before a booking is written.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, time
from typing import Optional

from agenda.errors import BookingRejection, RejectionReason
from agenda.schemas.booking_schema import Booking
from agenda.schemas.calendar_schema import BlockedInterval, DateException
from agenda.schemas.catalog_schema import ServiceOffering
from agenda.scheduling.calendar_rules import CalendarRuleEngine, ClosureReason
from agenda.scheduling.conflicts import Interval, busy_intervals, is_interval_free
from agenda.scheduling.slots import generate_slots
from agenda.utils import format_time

logger = logging.getLogger(__name__)

CLOSURE_MESSAGES: dict[ClosureReason, str] = {
    ClosureReason.PAST: "A data escolhida já passou.",
    ClosureReason.HOLIDAY: "A data escolhida é feriado.",
    ClosureReason.BLOCKED: "A data escolhida está indisponível.",
    ClosureReason.DAY_OFF: "Estamos encerrados neste dia.",
    ClosureReason.RESTRICTED_CATEGORY: (
        "Este serviço só está disponível no último fim de semana do mês."
    ),
}


@dataclass
class DayContext:
    """Committed data for one date: bookings of the lane, blocks, exceptions."""
    day: date
    bookings: list[Booking] = field(default_factory=list)
    blocks: list[BlockedInterval] = field(default_factory=list)
    exceptions: list[DateException] = field(default_factory=list)


class AvailabilityResolver:
    """Pure resolver: output depends only on its arguments."""

    def __init__(self, engine: CalendarRuleEngine) -> None:
        self.engine = engine

    def closure_reason(
        self, ctx: DayContext, category_slug: str, professional_id: Optional[str], today: date
    ) -> Optional[ClosureReason]:
        return self.engine.closure_reason(
            ctx.day,
            category_slug,
            today=today,
            blocks=ctx.blocks,
            exceptions=ctx.exceptions,
            professional_id=professional_id,
        )

    def list_bookable_slots(
        self, ctx: DayContext, service: ServiceOffering, *, today: date
    ) -> list[time]:
        """Free start times for the service on ctx.day, ascending. Empty when closed."""
        professional_id = service.responsible_professional_id
        if self.closure_reason(ctx, service.category_slug, professional_id, today) is not None:
            return []

        window = self.engine.working_hours(service.category_slug)
        busy = busy_intervals(
            ctx.bookings,
            ctx.blocks,
            category_slug=service.category_slug,
            professional_id=professional_id,
        )
        return [
            start
            for start in generate_slots(
                service.duration_minutes, window, self.engine.policy.slot_stride_minutes
            )
            if is_interval_free(Interval.for_service(start, service.duration_minutes), busy)
        ]

    def evaluate(
        self,
        ctx: DayContext,
        service: ServiceOffering,
        start: time,
        *,
        today: date,
        exclude_booking_id: Optional[str] = None,
    ) -> Optional[BookingRejection]:
        """Authoritative check of one proposed slot. None means it may be committed."""
        professional_id = service.responsible_professional_id
        closure = self.closure_reason(ctx, service.category_slug, professional_id, today)
        if closure is not None:
            return BookingRejection(RejectionReason.DATE_CLOSED, CLOSURE_MESSAGES[closure])

        candidate = Interval.for_service(start, service.duration_minutes)
        window = self.engine.working_hours(service.category_slug)
        if not candidate.within(window.start, window.end):
            return BookingRejection(
                RejectionReason.SLOT_CONFLICT,
                f"O horário deve estar entre {format_time(window.start)} "
                f"e {format_time(window.end)}.",
            )

        busy = busy_intervals(
            ctx.bookings,
            ctx.blocks,
            category_slug=service.category_slug,
            professional_id=professional_id,
            exclude_booking_id=exclude_booking_id,
        )
        if not is_interval_free(candidate, busy):
            logger.debug(
                "Slot %s on %s overlaps %d busy intervals",
                format_time(start), ctx.day.isoformat(), len(busy),
            )
            return BookingRejection(
                RejectionReason.SLOT_CONFLICT,
                "Este horário sobrepõe uma marcação já existente.",
            )
        return None
