"""
Finite state machine for the booking commit lifecycle.

    proposed --confirm--> confirmed --cancel--> cancelled
                          confirmed --reschedule--> confirmed

A reschedule keeps the booking confirmed and mutates its date and times in
place, preserving its identity. Cancelled is terminal.

Usage:
    sm = BookingStateMachine()
    sm.transition(BookingTrigger.CONFIRM)
    assert sm.current_state == BookingStatus.CONFIRMED
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from agenda.schemas.booking_schema import BookingStatus

logger = logging.getLogger(__name__)


class BookingTrigger(str, Enum):
    """Events that move a booking between states."""
    CONFIRM = "confirm"
    CANCEL = "cancel"
    RESCHEDULE = "reschedule"


@dataclass
class Transition:
    """A single valid state transition."""
    from_state: BookingStatus
    to_state: BookingStatus
    trigger: BookingTrigger


@dataclass
class StateEntry:
    """Recorded history entry for a state visit."""
    state: BookingStatus
    entered_at: datetime
    trigger: Optional[BookingTrigger] = None


class InvalidTransitionError(Exception):
    """Raised when a transition is not valid from the current state."""


class BookingStateMachine:
    """Explicit transition table. Anything not listed is rejected."""

    TRANSITIONS: list[Transition] = [
        Transition(BookingStatus.PROPOSED, BookingStatus.CONFIRMED, BookingTrigger.CONFIRM),
        Transition(BookingStatus.CONFIRMED, BookingStatus.CANCELLED, BookingTrigger.CANCEL),
        Transition(BookingStatus.CONFIRMED, BookingStatus.CONFIRMED, BookingTrigger.RESCHEDULE),
    ]

    def __init__(self, initial: BookingStatus = BookingStatus.PROPOSED) -> None:
        self._current_state = initial
        self._history: list[StateEntry] = [
            StateEntry(state=initial, entered_at=datetime.now(timezone.utc))
        ]

    @property
    def current_state(self) -> BookingStatus:
        return self._current_state

    def transition(self, trigger: BookingTrigger) -> BookingStatus:
        """
        Execute a state transition.

        Raises:
            InvalidTransitionError: If no valid transition exists.
        """
        for t in self.TRANSITIONS:
            if t.from_state == self._current_state and t.trigger == trigger:
                old_state = self._current_state
                self._current_state = t.to_state
                self._history.append(StateEntry(
                    state=self._current_state,
                    entered_at=datetime.now(timezone.utc),
                    trigger=trigger,
                ))
                logger.debug(
                    "Booking transition: %s -> %s (trigger: %s)",
                    old_state.value, self._current_state.value, trigger.value,
                )
                return self._current_state

        valid = [t.value for t in self.get_valid_triggers()]
        raise InvalidTransitionError(
            f"No valid transition from '{self._current_state.value}' "
            f"with trigger '{trigger.value}'. Valid triggers: {valid}"
        )

    def get_valid_triggers(self) -> list[BookingTrigger]:
        """Return all triggers valid from the current state."""
        return [t.trigger for t in self.TRANSITIONS if t.from_state == self._current_state]

    def get_history(self) -> list[StateEntry]:
        return list(self._history)

    def is_terminal(self) -> bool:
        return not self.get_valid_triggers()
