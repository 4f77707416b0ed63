import os

# Must be set before bookingsync is imported: config reads the environment at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["HAPIO_SECRET"] = "whsec_hapio_test"
os.environ["HAPIO_API_TOKEN"] = "hapio-test-token"
os.environ["HAPIO_BASE_URL"] = "https://hapio.test/v1"
os.environ["HAPIO_SERVICE_MAP_PATH"] = ""
os.environ["HAPIO_DEFAULT_LOCATION_ID"] = ""
os.environ["HAPIO_DEFAULT_RESOURCE_ID"] = ""
os.environ["STRIPE_SECRET_KEY"] = "sk_test_bookingsync"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_stripe_test"
os.environ["RESEND_API_KEY"] = ""
os.environ["BREVO_API_KEY"] = ""
os.environ["DB_LOG_SLOW_QUERIES"] = "false"

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

import pytest
from fastapi.testclient import TestClient

from bookingsync import email_service
from bookingsync.database import Base, SessionLocal, engine, get_db
from bookingsync.dependencies import get_contact_sync, get_hapio_client, get_payment_gateway
from bookingsync.domain.bookings.repository import BookingRepository
from bookingsync.errors import RemoteAuthorityError
from bookingsync.main import app
from bookingsync.models import Service
from bookingsync.services.hapio_client import HapioBooking
from bookingsync.services.payment_gateway import PaymentIntentInfo, RefundResult, StripeGateway

STRIPE_WEBHOOK_SECRET = os.environ["STRIPE_WEBHOOK_SECRET"]


class FakeHapio:
    """In-memory stand-in for HapioClient that records every call"""

    def __init__(self):
        self.calls: list[tuple[str, dict]] = []
        self.bookings: dict[str, HapioBooking] = {}
        self.errors: dict[str, Exception] = {}
        self._counter = 0

    def _call(self, name: str, **kwargs):
        self.calls.append((name, kwargs))
        if name in self.errors:
            raise self.errors[name]

    def calls_to(self, name: str) -> list[dict]:
        return [kwargs for call, kwargs in self.calls if call == name]

    async def create_temporary_booking(
        self,
        service_id,
        location_id,
        starts_at,
        ends_at,
        resource_id=None,
        metadata=None,
        tz_name=None,
    ):
        self._call(
            "create_temporary_booking",
            service_id=service_id,
            location_id=location_id,
            starts_at=starts_at,
            ends_at=ends_at,
            resource_id=resource_id,
            metadata=metadata,
        )
        self._counter += 1
        booking = HapioBooking(
            id=f"hapio-{self._counter}",
            service_id=service_id,
            location_id=location_id,
            resource_id=resource_id,
            starts_at=starts_at,
            ends_at=ends_at,
            is_temporary=True,
            metadata=metadata or {},
        )
        self.bookings[booking.id] = booking
        return booking

    async def confirm_booking(self, booking_id, metadata=None):
        self._call("confirm_booking", booking_id=booking_id, metadata=metadata)
        booking = self.bookings.setdefault(booking_id, HapioBooking(id=booking_id))
        booking.is_temporary = False
        return booking

    async def update_booking(self, booking_id, starts_at, ends_at, ignore_schedule=False, metadata=None, tz_name=None):
        self._call(
            "update_booking",
            booking_id=booking_id,
            starts_at=starts_at,
            ends_at=ends_at,
            ignore_schedule=ignore_schedule,
        )
        booking = self.bookings.setdefault(booking_id, HapioBooking(id=booking_id))
        booking.starts_at = starts_at
        booking.ends_at = ends_at
        return booking

    async def cancel_booking(self, booking_id):
        self._call("cancel_booking", booking_id=booking_id)
        booking = self.bookings.get(booking_id)
        if booking:
            booking.is_canceled = True

    async def get_booking(self, booking_id):
        self._call("get_booking", booking_id=booking_id)
        booking = self.bookings.get(booking_id)
        if booking is None:
            raise RemoteAuthorityError("Booking not found", status_code=404)
        return booking


class FakeGateway:
    """In-memory stand-in for StripeGateway"""

    def __init__(self):
        self.intents: dict[str, PaymentIntentInfo] = {}
        self.created: list[dict] = []
        self.refunds: list[dict] = []
        self.voids: list[str] = []
        self.refund_error: Optional[Exception] = None
        self.retrieve_count = 0

    def add_intent(self, intent_id="pi_test_1", status="succeeded", amount_cents=12000, metadata=None):
        info = PaymentIntentInfo(
            id=intent_id,
            status=status,
            amount_cents=amount_cents,
            currency="usd",
            client_secret=f"{intent_id}_secret",
            metadata=metadata or {},
        )
        self.intents[intent_id] = info
        return info

    async def create_payment_intent(
        self, amount_cents, metadata, currency=None, receipt_email=None, idempotency_key=None
    ):
        intent_id = f"pi_test_{len(self.created) + 1}"
        self.created.append(
            {
                "amount_cents": amount_cents,
                "metadata": metadata,
                "receipt_email": receipt_email,
                "idempotency_key": idempotency_key,
            }
        )
        return self.add_intent(
            intent_id,
            status="requires_payment_method",
            amount_cents=amount_cents,
            metadata={k: str(v) for k, v in metadata.items() if v is not None},
        )

    async def retrieve_payment_intent(self, payment_intent_id):
        self.retrieve_count += 1
        if payment_intent_id not in self.intents:
            raise RemoteAuthorityError("No such payment_intent", status_code=404, authority="stripe")
        return self.intents[payment_intent_id]

    async def refund(self, payment_intent_id, amount_cents=None, reason="requested_by_customer"):
        if self.refund_error:
            raise self.refund_error
        refund_id = f"re_test_{len(self.refunds) + 1}"
        self.refunds.append({"payment_intent_id": payment_intent_id, "amount_cents": amount_cents})
        return RefundResult(success=True, refund_id=refund_id, amount_cents=amount_cents or 0, status="succeeded")

    async def cancel_payment_intent(self, payment_intent_id, reason="requested_by_customer"):
        self.voids.append(payment_intent_id)
        intent = self.intents[payment_intent_id]
        intent.status = "canceled"
        return intent

    def construct_event(self, payload, signature):
        # real Stripe signature check, no network involved
        return StripeGateway(api_key="sk_test_bookingsync", webhook_secret=STRIPE_WEBHOOK_SECRET).construct_event(
            payload, signature
        )


class FakeContacts:
    enabled = True

    def __init__(self):
        self.upserts: list[dict] = []

    async def upsert_contact(self, email, first_name=None, last_name=None, phone=None, attributes=None):
        self.upserts.append(
            {
                "email": email,
                "first_name": first_name,
                "last_name": last_name,
                "phone": phone,
                "attributes": attributes,
            }
        )
        return True


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def hapio():
    return FakeHapio()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def contacts():
    return FakeContacts()


@pytest.fixture
def sent_emails(monkeypatch):
    """Replaces the outbound email senders; returns the list of (kind, booking_id, kwargs)"""
    sent = []

    def recorder(kind):
        async def _send(booking, **kwargs):
            sent.append((kind, booking.id, kwargs))
            return {"id": f"email-{len(sent)}"}

        return _send

    monkeypatch.setattr(email_service, "send_booking_confirmation", recorder("confirmation"))
    monkeypatch.setattr(email_service, "send_booking_reschedule", recorder("reschedule"))
    monkeypatch.setattr(email_service, "send_booking_cancellation", recorder("cancellation"))
    return sent


@pytest.fixture
def client(db, hapio, gateway, contacts, sent_emails):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_hapio_client] = lambda: hapio
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_contact_sync] = lambda: contacts
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def facial_service(db):
    service = Service(
        slug="signature-facial",
        name="Signature Facial",
        price=Decimal("120.00"),
        duration_minutes=60,
        hapio_service_id="svc-remote-1",
        hapio_location_id="loc-1",
        hapio_resource_id="res-1",
        is_active=True,
    )
    db.add(service)
    db.commit()
    return service


def make_booking(db, remote_booking_id="hapio-seed-1", start=None, state="holding", **values):
    """Insert a booking row directly and return it"""
    start = start or datetime(2030, 1, 15, 15, 0, tzinfo=timezone.utc)
    values.setdefault("service_id", "signature-facial")
    values.setdefault("service_name", "Signature Facial")
    values.setdefault("client_name", "Ada Lovelace")
    values.setdefault("client_email", "ada@example.com")
    values.setdefault("client_phone", "+15555550100")
    values.setdefault("timezone", "America/New_York")
    values.setdefault("meta", {"source": "website", "hapio": {"bookingId": remote_booking_id, "status": "temporary"}})
    booking_id = BookingRepository.upsert_reservation(
        db,
        remote_booking_id=remote_booking_id,
        start_at=start,
        end_at=start + timedelta(hours=1),
        lifecycle_state=state,
        **values,
    )
    db.commit()
    return BookingRepository.get_by_id(db, booking_id)
