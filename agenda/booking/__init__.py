from agenda.booking.notifications import (
    BookingEvent,
    EventKind,
    NotificationDispatcher,
)
from agenda.booking.reminders import ReminderJob, ReminderReport
from agenda.booking.service import BookingResult, BookingService
from agenda.booking.state_machine import (
    BookingStateMachine,
    BookingTrigger,
    InvalidTransitionError,
)
from agenda.booking.store import BookingStore, InMemoryBookingStore

__all__ = [
    "BookingEvent", "EventKind", "NotificationDispatcher",
    "ReminderJob", "ReminderReport",
    "BookingResult", "BookingService",
    "BookingStateMachine", "BookingTrigger", "InvalidTransitionError",
    "BookingStore", "InMemoryBookingStore",
]
