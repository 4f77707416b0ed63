import json

import pytest

from bookingsync.domain.bookings.finalization_service import FinalizationService
from bookingsync.domain.bookings.repository import BookingRepository
from bookingsync.domain.webhooks.events import (
    BookingCanceled,
    BookingConfirmed,
    BookingCreated,
    BookingUpdated,
    PingEvent,
    UnknownEvent,
    parse_event,
)
from bookingsync.models import LifecycleState
from bookingsync.webhook_security import create_webhook_signature
from conftest import make_booking

SECRET = "whsec_hapio_test"


def hapio_event(event_type: str, booking_id="hapio-1", **data) -> bytes:
    payload = {"id": f"evt-{event_type}", "type": event_type, "data": {"id": booking_id, **data}}
    return json.dumps(payload).encode()


def deliver(client, body: bytes, signature=None, headers=None):
    sent_headers = {
        "Content-Type": "application/json",
        "X-Hapio-Signature": signature if signature is not None else create_webhook_signature(SECRET, body, "hapio"),
    }
    sent_headers.update(headers or {})
    return client.post("/webhooks/hapio", content=body, headers=sent_headers)


def state_of(db, remote_id="hapio-1") -> str:
    db.expire_all()
    return BookingRepository.get_by_remote_id(db, remote_id).lifecycle_state


@pytest.mark.parametrize(
    "event_type,data,expected",
    [
        ("booking.created", {}, BookingCreated),
        ("booking.confirmed", {}, BookingConfirmed),
        ("booking.updated", {"status": "confirmed"}, BookingUpdated),
        ("booking.canceled", {}, BookingCanceled),
        ("booking.cancelled", {}, BookingCanceled),
        ("booking.updated", {"is_canceled": True}, BookingCanceled),
        ("ping", {}, PingEvent),
        ("booking.archived", {}, UnknownEvent),
    ],
)
def test_parse_event_picks_class(event_type, data, expected):
    event = parse_event(json.loads(hapio_event(event_type, **data)))
    assert isinstance(event, expected)


def test_updated_event_prefers_remote_status():
    assert parse_event(json.loads(hapio_event("booking.updated", status="confirmed"))).target_state() == LifecycleState.CONFIRMED
    assert parse_event(json.loads(hapio_event("booking.updated"))).target_state() == LifecycleState.UPDATED


def test_parse_event_reads_payload_envelope_and_numeric_ids():
    event = parse_event({"type": "booking.created", "payload": {"id": 123, "resource_id": 9}})
    assert event.booking_id == "123"
    assert event.booking.resource_id == "9"


def test_confirmed_event_moves_booking_to_confirmed(client, db):
    make_booking(db, remote_booking_id="hapio-1")

    response = deliver(client, hapio_event("booking.confirmed", is_temporary=False))

    assert response.status_code == 200
    assert response.json()["lifecycleState"] == "confirmed"
    assert state_of(db) == "confirmed"
    booking = BookingRepository.get_by_remote_id(db, "hapio-1")
    assert booking.meta["hapio"]["lastEventType"] == "booking.confirmed"
    assert booking.meta["hapio"]["isTemporary"] is False
    # overlay keeps the lock step's fields
    assert booking.meta["source"] == "website"


def test_duplicate_confirmed_delivery_converges(client, db):
    make_booking(db, remote_booking_id="hapio-1")
    body = hapio_event("booking.confirmed")

    assert deliver(client, body).status_code == 200
    assert deliver(client, body).status_code == 200

    assert state_of(db) == "confirmed"


@pytest.mark.parametrize(
    "order",
    [
        ["booking.created", "booking.confirmed"],
        ["booking.confirmed", "booking.created"],
        ["booking.confirmed", "booking.updated", "booking.created"],
    ],
)
def test_out_of_order_delivery_ends_confirmed(client, db, order):
    make_booking(db, remote_booking_id="hapio-1")

    for event_type in order:
        assert deliver(client, hapio_event(event_type)).status_code == 200

    assert state_of(db) == "confirmed"


@pytest.mark.asyncio
async def test_late_created_webhook_after_finalize_stays_confirmed(client, db, hapio, gateway, contacts, sent_emails):
    make_booking(db, remote_booking_id="hapio-1")
    gateway.add_intent("pi_1")
    await FinalizationService(db, hapio, gateway, contacts).finalize("pi_1", "hapio-1")

    response = deliver(client, hapio_event("booking.created", is_temporary=True))

    assert response.status_code == 200
    assert state_of(db) == "confirmed"


def test_cancel_is_absorbing(client, db):
    make_booking(db, remote_booking_id="hapio-1")

    deliver(client, hapio_event("booking.canceled", is_canceled=True))
    deliver(client, hapio_event("booking.confirmed"))

    assert state_of(db) == "cancelled"
    booking = BookingRepository.get_by_remote_id(db, "hapio-1")
    assert "cancelledAt" in booking.meta["hapio"]


def test_remote_slot_times_are_applied(client, db):
    make_booking(db, remote_booking_id="hapio-1")

    deliver(
        client,
        hapio_event("booking.updated", starts_at="2030-02-01T14:00:00+00:00", ends_at="2030-02-01T15:00:00+00:00"),
    )

    db.expire_all()
    booking = BookingRepository.get_by_remote_id(db, "hapio-1")
    assert booking.start_at.strftime("%Y-%m-%dT%H:%M") == "2030-02-01T14:00"
    assert booking.lifecycle_state == "updated"


def test_tampered_body_is_rejected_without_mutation(client, db):
    make_booking(db, remote_booking_id="hapio-1")
    before = BookingRepository.get_by_remote_id(db, "hapio-1")
    meta_before = dict(before.meta)

    body = hapio_event("booking.canceled", is_canceled=True)
    signature = create_webhook_signature(SECRET, body, "hapio")
    tampered = bytearray(body)
    tampered[-2] = ord("X") if tampered[-2] != ord("X") else ord("Y")

    response = deliver(client, bytes(tampered), signature=signature)

    assert response.status_code == 401
    assert response.json()["error"] == "invalid_signature"
    db.expire_all()
    after = BookingRepository.get_by_remote_id(db, "hapio-1")
    assert after.lifecycle_state == "holding"
    assert after.meta == meta_before


def test_missing_signature_is_401(client, db):
    make_booking(db, remote_booking_id="hapio-1")

    response = deliver(client, hapio_event("booking.confirmed"), signature="")

    assert response.status_code == 401
    assert state_of(db) == "holding"


def test_base64_signature_is_accepted(client, db):
    make_booking(db, remote_booking_id="hapio-1")
    body = hapio_event("booking.confirmed")

    response = deliver(client, body, signature=create_webhook_signature(SECRET, body, "hapio_base64"))

    assert response.status_code == 200
    assert state_of(db) == "confirmed"


def test_ping_is_acknowledged_without_storage(client, db):
    body = json.dumps({"type": "ping"}).encode()

    response = deliver(client, body)

    assert response.status_code == 200
    assert response.json() == {"ok": True, "ping": True}


def test_unknown_booking_is_acknowledged(client, db):
    response = deliver(client, hapio_event("booking.confirmed", booking_id="hapio-elsewhere"))

    assert response.status_code == 200
    assert response.json() == {"ok": True, "missing": True}


def test_event_without_booking_id_is_ignored(client, db):
    body = json.dumps({"type": "booking.updated", "data": {"status": "confirmed"}}).encode()

    response = deliver(client, body)

    assert response.json() == {"ok": True, "ignored": True}


def test_invalid_json_after_valid_signature_is_400(client, db):
    response = deliver(client, b"{not json")
    assert response.status_code == 400


def test_webhook_reachability_endpoint(client):
    response = client.get("/webhooks/hapio")
    assert response.status_code == 200
    assert response.json()["method"] == "POST"
