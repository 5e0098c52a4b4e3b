"""Service catalog data models."""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class ServiceOffering(BaseModel):
    """A bookable unit. Unassigned services have no responsible professional.

    Only a positive duration is enforced here. The booking minimum is a
    scheduling setting checked by the booking service.
    """
    id: str
    name: str
    duration_minutes: int = Field(ge=1)
    price: Decimal = Decimal("0")
    category_slug: str
    responsible_professional_id: Optional[str] = None
