"""Payment domain schemas"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, field_validator

from ...shared.validators import clean_text, validate_email


class CreateIntentRequest(BaseModel):
    """Schema for opening a Stripe payment intent for a held slot"""

    serviceId: str
    slotStart: datetime
    slotEnd: datetime
    hapioBookingId: Optional[str] = None
    timezone: Optional[str] = None
    # explicit amount for deposits/discounts; catalog price otherwise
    amountCents: Optional[int] = None
    email: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None

    @field_validator("email")
    @classmethod
    def check_email(cls, v):
        return validate_email(v)

    @field_validator("name", "phone", "hapioBookingId", "timezone")
    @classmethod
    def strip_text(cls, v):
        return clean_text(v)


class CreateIntentResponse(BaseModel):
    clientSecret: Optional[str]
    paymentIntentId: str
    amountCents: int
    amountDollars: float
