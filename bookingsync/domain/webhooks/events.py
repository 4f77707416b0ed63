"""
Hapio webhook events

Deliveries share an envelope ({type, data|payload}); the event class is chosen
from the type, and each class knows which local lifecycle state it drives
the booking towards.
"""

from typing import Any, ClassVar, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from ...models import LifecycleState

# remote status string on an "updated" event -> local state
REMOTE_STATUS_STATES = {
    "confirmed": LifecycleState.CONFIRMED,
    "canceled": LifecycleState.CANCELLED,
    "cancelled": LifecycleState.CANCELLED,
    "temporary": LifecycleState.HOLDING,
    "created": LifecycleState.CREATED,
}


class HapioBookingData(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    service_id: Optional[str] = None
    location_id: Optional[str] = None
    resource_id: Optional[str] = None
    starts_at: Optional[str] = None
    ends_at: Optional[str] = None
    status: Optional[str] = None
    is_temporary: Optional[bool] = None
    is_canceled: Optional[bool] = None
    metadata: Optional[dict[str, Any]] = None

    @field_validator("id", "service_id", "location_id", "resource_id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        return str(v) if v is not None else None


class HapioEvent(BaseModel):
    """Shared envelope; subclasses fix the transition"""

    model_config = ConfigDict(extra="allow")

    kind: ClassVar[str] = "unknown"

    id: Optional[str] = None
    type: str = ""
    created_at: Optional[str] = None
    booking: Optional[HapioBookingData] = None

    @property
    def booking_id(self) -> Optional[str]:
        return self.booking.id if self.booking else None

    def target_state(self) -> Optional[LifecycleState]:
        return None

    def status_label(self) -> Optional[str]:
        """Status recorded in metadata.hapio.status"""
        return self.booking.status if self.booking else None


class PingEvent(HapioEvent):
    kind: ClassVar[str] = "ping"


class BookingCreated(HapioEvent):
    kind: ClassVar[str] = "created"

    def target_state(self) -> Optional[LifecycleState]:
        return LifecycleState.CREATED

    def status_label(self) -> Optional[str]:
        return "created"


class BookingConfirmed(HapioEvent):
    kind: ClassVar[str] = "confirmed"

    def target_state(self) -> Optional[LifecycleState]:
        return LifecycleState.CONFIRMED

    def status_label(self) -> Optional[str]:
        return "confirmed"


class BookingUpdated(HapioEvent):
    kind: ClassVar[str] = "updated"

    def target_state(self) -> Optional[LifecycleState]:
        status = (self.booking.status or "").lower() if self.booking else ""
        return REMOTE_STATUS_STATES.get(status, LifecycleState.UPDATED)

    def status_label(self) -> Optional[str]:
        return (self.booking.status if self.booking else None) or "updated"


class BookingCanceled(HapioEvent):
    kind: ClassVar[str] = "canceled"

    def target_state(self) -> Optional[LifecycleState]:
        return LifecycleState.CANCELLED

    def status_label(self) -> Optional[str]:
        return "cancelled"


class UnknownEvent(HapioEvent):
    """Unrecognised type: fields are still overlaid, state only moves on a known remote status"""

    def target_state(self) -> Optional[LifecycleState]:
        status = (self.booking.status or "").lower() if self.booking else ""
        return REMOTE_STATUS_STATES.get(status)


def parse_event(body: dict) -> HapioEvent:
    """Pick the event class for a decoded webhook body"""
    event_type = str(body.get("type") or "")
    raw_booking = body.get("data")
    if not isinstance(raw_booking, dict):
        raw_booking = body.get("payload") if isinstance(body.get("payload"), dict) else None

    booking = HapioBookingData.model_validate(raw_booking) if raw_booking else None
    lowered = event_type.lower()

    if not lowered or "ping" in lowered:
        cls = PingEvent
    elif "cancel" in lowered or (booking is not None and booking.is_canceled):
        cls = BookingCanceled
    elif "confirmed" in lowered:
        cls = BookingConfirmed
    elif "created" in lowered:
        cls = BookingCreated
    elif "updated" in lowered:
        cls = BookingUpdated
    else:
        cls = UnknownEvent

    event_id = body.get("id")
    return cls(
        id=str(event_id) if event_id is not None else None,
        type=event_type,
        created_at=body.get("created_at"),
        booking=booking,
    )
