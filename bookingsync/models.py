import enum

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Boolean,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


class LifecycleState(str, enum.Enum):
    """Local lifecycle of a booking attempt"""

    HOLDING = "holding"
    CREATED = "created"
    UPDATED = "updated"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


# Forward order for non-terminal states; terminal states are absorbing
STATE_RANK = {
    LifecycleState.HOLDING: 0,
    LifecycleState.CREATED: 1,
    LifecycleState.UPDATED: 2,
    LifecycleState.CONFIRMED: 3,
}
TERMINAL_STATES = frozenset({LifecycleState.CANCELLED, LifecycleState.EXPIRED})


def allowed_predecessors(target: LifecycleState) -> list[str]:
    """States from which a booking may move to ``target``"""
    if target in TERMINAL_STATES:
        return [state.value for state in STATE_RANK]
    rank = STATE_RANK[target]
    return [state.value for state, r in STATE_RANK.items() if r < rank]


class Service(Base):
    """Local catalog mirror; maintained elsewhere, read here for pricing and Hapio mapping"""

    __tablename__ = "services"

    id = Column(Integer, primary_key=True, index=True)
    slug = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=False)
    price = Column(Numeric(10, 2), nullable=True)  # dollars
    duration_minutes = Column(Integer, nullable=True)
    hapio_service_id = Column(String(255), nullable=True)
    hapio_location_id = Column(String(255), nullable=True)
    hapio_resource_id = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class Customer(Base):
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True)
    # Stored lower-cased; CITEXT on PostgreSQL (see migrations/create_booking_tables.py)
    email = Column(String(255), unique=True, index=True, nullable=False)
    first_name = Column(String(255), nullable=True)
    last_name = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    last_seen_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    bookings = relationship("Booking", back_populates="customer")


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    # Hapio booking id; set once by the lock step and never reassigned
    remote_booking_id = Column(String(255), unique=True, index=True, nullable=True)
    service_id = Column(String(255), nullable=True)  # catalog slug
    service_name = Column(String(255), nullable=True)
    resource_id = Column(String(255), nullable=True)
    start_at = Column(DateTime(timezone=True), nullable=True)
    end_at = Column(DateTime(timezone=True), nullable=True)
    timezone = Column(String(64), nullable=True)
    client_name = Column(String(255), nullable=True)
    client_email = Column(String(255), nullable=True, index=True)
    client_phone = Column(String(50), nullable=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=True)
    lifecycle_state = Column(
        String(32), default=LifecycleState.HOLDING.value, nullable=False, index=True
    )
    payment_status = Column(String(50), nullable=True)  # last status seen at Stripe
    payment_intent_id = Column(String(255), nullable=True, index=True)
    # "metadata" is reserved on declarative classes
    meta = Column("metadata", JSON, key="meta", default=dict, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    customer = relationship("Customer", back_populates="bookings")
    events = relationship("BookingEvent", back_populates="booking", order_by="BookingEvent.id")
    payments = relationship("Payment", back_populates="booking")


class BookingEvent(Base):
    """Append-only audit log; rows are never updated or deleted"""

    __tablename__ = "booking_events"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    type = Column(String(64), nullable=False)  # finalized, email_sent, rescheduled, cancelled, refunded
    data = Column(JSON, nullable=True)
    # e.g. "finalized:pi_123" - makes one-per-payment events a store-level guarantee
    dedup_key = Column(String(255), unique=True, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    booking = relationship("Booking", back_populates="events")


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    external_transaction_id = Column(String(255), unique=True, nullable=False)
    amount_cents = Column(Integer, nullable=False)
    refunded_cents = Column(Integer, default=0, nullable=False)
    currency = Column(String(3), nullable=False, default="usd")
    status = Column(String(50), nullable=False)
    provider = Column(String(50), nullable=False, default="stripe")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    booking = relationship("Booking", back_populates="payments")
