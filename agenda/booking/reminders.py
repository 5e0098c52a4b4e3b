"""Day-before reminder job, run once a day by an external scheduler."""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable, Optional

from agenda.booking.notifications import BookingEvent, EventKind, NotificationDispatcher
from agenda.booking.store import BookingStore
from agenda.config import AppConfig, settings
from agenda.logging_context import get_request_logger, new_request_id
from agenda.schemas.booking_schema import Booking
from agenda.utils import business_now

logger = get_request_logger(__name__)


@dataclass
class ReminderReport:
    target_date: date
    sent: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.sent) + len(self.failed)


class ReminderJob:
    """Reminds clients of confirmed bookings for tomorrow (business timezone).

    A booking is marked as reminded once at least one channel delivered, so
    a rerun on the same day does not send duplicates. Bookings with no
    channel to reach them are skipped and stay pending.
    """

    def __init__(
        self,
        store: BookingStore,
        notifier: NotificationDispatcher,
        clock: Optional[Callable[[], datetime]] = None,
        config: AppConfig = settings,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._clock = clock or (lambda: business_now(config.business.timezone))

    async def run(self) -> ReminderReport:
        new_request_id()
        tomorrow = self._clock().date() + timedelta(days=1)
        report = ReminderReport(target_date=tomorrow)
        bookings = await self._store.list_bookings_for_reminder(tomorrow)
        logger.info("Reminder run for %s: %d booking(s)", tomorrow, len(bookings))

        for booking in bookings:
            channels = self._channel_count(booking)
            if channels == 0:
                logger.warning("No reminder channel for booking %s", booking.id)
                report.skipped.append(booking.id)
                continue
            try:
                failed = await self._notifier.dispatch(BookingEvent(EventKind.REMINDER, booking))
                if len(failed) >= channels:
                    report.failed.append(booking.id)
                    continue
                await self._store.mark_reminder_sent(booking.id)
                report.sent.append(booking.id)
            except Exception:
                logger.exception("Reminder failed for booking %s", booking.id)
                report.failed.append(booking.id)

        logger.info(
            "Reminder run for %s finished: %d sent, %d failed, %d skipped",
            tomorrow, len(report.sent), len(report.failed), len(report.skipped),
        )
        return report

    def _channel_count(self, booking: Booking) -> int:
        """Channels a reminder for this booking is attempted on."""
        count = 0
        if self._notifier.email is not None and booking.client_email:
            count += 1
        if self._notifier.push is not None:
            count += 1
        return count
