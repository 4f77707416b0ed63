"""Booking domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, field_validator

from ...shared.validators import clean_text, normalize_phone, validate_email


class CustomerInfo(BaseModel):
    """Customer details captured by the booking form"""

    name: Optional[str] = None
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None

    @field_validator("name", "firstName", "lastName")
    @classmethod
    def strip_names(cls, v):
        return clean_text(v)

    @field_validator("email")
    @classmethod
    def check_email(cls, v):
        return validate_email(v)

    @field_validator("phone")
    @classmethod
    def check_phone(cls, v):
        return normalize_phone(v)

    @property
    def display_name(self) -> Optional[str]:
        if self.name:
            return self.name
        joined = " ".join(p for p in (self.firstName, self.lastName) if p)
        return joined or None


class LockRequest(BaseModel):
    """Schema for placing a temporary hold on a slot"""

    serviceId: str
    resourceId: Optional[str] = None
    start: datetime
    end: datetime
    timezone: Optional[str] = None
    customer: Optional[CustomerInfo] = None


class LockResponse(BaseModel):
    bookingId: int
    hapioBookingId: str
    serviceId: str
    start: datetime
    end: datetime
    timezone: Optional[str] = None
    isTemporary: bool = True


class FinalizeRequest(BaseModel):
    """Schema for finalizing a paid booking"""

    paymentIntentId: str
    hapioBookingId: Optional[str] = None
    customer: Optional[CustomerInfo] = None

    @field_validator("paymentIntentId")
    @classmethod
    def require_intent(cls, v):
        v = clean_text(v)
        if not v:
            raise ValueError("paymentIntentId is required")
        return v


class FinalizeResponse(BaseModel):
    success: bool = True
    bookingId: int
    hapioBookingId: Optional[str] = None
    customerId: Optional[int] = None
    paymentId: Optional[int] = None
    lifecycleState: str
    paymentStatus: Optional[str] = None
    reconstructed: bool = False
    emailSent: bool = False


class RescheduleRequest(BaseModel):
    newStart: datetime
    newEnd: Optional[datetime] = None


class RescheduleResponse(BaseModel):
    success: bool = True
    bookingId: int
    hapioBookingId: Optional[str] = None
    start: datetime
    end: datetime
    previousStart: Optional[datetime] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = None
    cancelledBy: str = "customer"


class CancelResponse(BaseModel):
    success: bool = True
    bookingId: int
    lifecycleState: str
    refunded: bool = False
    refundAmountCents: int = 0
    refundId: Optional[str] = None
    remoteCancelled: bool = False
    paymentVoided: bool = False


class BookingResponse(BaseModel):
    """Local view of a booking"""

    id: int
    remote_booking_id: Optional[str] = None
    service_id: Optional[str] = None
    service_name: Optional[str] = None
    resource_id: Optional[str] = None
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    timezone: Optional[str] = None
    client_name: Optional[str] = None
    client_email: Optional[str] = None
    client_phone: Optional[str] = None
    customer_id: Optional[int] = None
    lifecycle_state: str
    payment_status: Optional[str] = None
    payment_intent_id: Optional[str] = None
    meta: Optional[dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
