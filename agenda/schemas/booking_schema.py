"""Booking, client identity, and request data models."""

from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from agenda.schemas.catalog_schema import ServiceOffering


class BookingStatus(str, Enum):
    """Lifecycle status of a booking. Only confirmed and cancelled are persisted."""
    PROPOSED = "proposed"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class ClientIdentity(BaseModel):
    """Who the appointment is for. The phone is the canonical identity key."""
    name: str
    phone: str
    email: Optional[str] = None

    @field_validator("name", "phone")
    @classmethod
    def _strip(cls, value: str) -> str:
        return value.strip()

    @field_validator("email")
    @classmethod
    def _blank_email_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None


class Actor(BaseModel):
    """The authenticated caller performing an operation."""
    is_admin: bool = False
    phone: Optional[str] = None
    user_id: Optional[str] = None


class Booking(BaseModel):
    """A committed appointment. Cancelled bookings are kept for history."""
    id: str
    service_name: str
    service_duration: int
    category_slug: str
    booking_date: date
    start_time: time
    end_time: time
    client_name: str
    client_phone: str
    client_email: Optional[str] = None
    responsible_professional_id: Optional[str] = None
    status: BookingStatus = BookingStatus.CONFIRMED
    reminder_sent: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_active(self) -> bool:
        return self.status != BookingStatus.CANCELLED


class BookingRequest(BaseModel):
    """A proposed booking as submitted by the client or admin booking flow.

    The professional lane is the service's responsible professional. When
    ``end_time`` is sent it must equal start + duration; the stored end is
    always derived.
    """
    booking_date: date
    start_time: time
    service: ServiceOffering
    client: ClientIdentity
    end_time: Optional[time] = None
