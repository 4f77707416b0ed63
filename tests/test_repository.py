import pytest

from bookingsync.domain.bookings.repository import BookingRepository, merge_metadata
from bookingsync.models import Booking, Customer, LifecycleState, Payment, allowed_predecessors
from conftest import make_booking


def test_merge_metadata_overlays_one_level_deep():
    existing = {"source": "website", "hapio": {"bookingId": "bk-1", "status": "temporary"}, "slot": {"start": "a"}}
    patch = {"hapio": {"status": "confirmed", "confirmedAt": "t"}, "slot": "replaced", "new": 1}

    merged = merge_metadata(existing, patch)

    assert merged == {
        "source": "website",
        "hapio": {"bookingId": "bk-1", "status": "confirmed", "confirmedAt": "t"},
        "slot": "replaced",
        "new": 1,
    }
    assert existing["hapio"]["status"] == "temporary"
    assert merge_metadata(None, {"a": 1}) == {"a": 1}


@pytest.mark.parametrize(
    "target,expected",
    [
        (LifecycleState.CREATED, ["holding"]),
        (LifecycleState.UPDATED, ["holding", "created"]),
        (LifecycleState.CONFIRMED, ["holding", "created", "updated"]),
        (LifecycleState.CANCELLED, ["holding", "created", "updated", "confirmed"]),
        (LifecycleState.EXPIRED, ["holding", "created", "updated", "confirmed"]),
    ],
)
def test_allowed_predecessors(target, expected):
    assert allowed_predecessors(target) == expected


def test_transition_only_moves_forward(db):
    booking = make_booking(db, remote_booking_id="bk-1")

    assert BookingRepository.transition_state(db, booking.id, LifecycleState.CONFIRMED) is True
    assert BookingRepository.transition_state(db, booking.id, LifecycleState.CREATED) is False
    assert BookingRepository.transition_state(db, booking.id, LifecycleState.CONFIRMED) is False
    assert BookingRepository.transition_state(db, booking.id, LifecycleState.CANCELLED) is True
    assert BookingRepository.transition_state(db, booking.id, LifecycleState.EXPIRED) is False
    db.commit()

    assert BookingRepository.get_by_id(db, booking.id).lifecycle_state == "cancelled"


def test_append_event_with_dedup_key_writes_once(db):
    booking = make_booking(db, remote_booking_id="bk-1")

    assert BookingRepository.append_event(db, booking.id, "finalized", {"a": 1}, dedup_key="finalized:pi_1") is True
    assert BookingRepository.append_event(db, booking.id, "finalized", {"a": 2}, dedup_key="finalized:pi_1") is False
    assert BookingRepository.append_event(db, booking.id, "note") is True
    assert BookingRepository.append_event(db, booking.id, "note") is True
    db.commit()

    assert BookingRepository.has_event(db, "finalized:pi_1")
    assert [e.type for e in BookingRepository.get_events(db, booking.id)] == ["finalized", "note", "note"]
    assert len(BookingRepository.get_events(db, booking.id, "finalized")) == 1


def test_customer_upsert_is_case_insensitive_and_keeps_fields(db):
    first = BookingRepository.upsert_customer(db, "Ada@Example.com", first_name="Ada", phone="+15555550100")
    second = BookingRepository.upsert_customer(db, "ada@example.COM", first_name="", last_name="Lovelace", phone=None)
    db.commit()

    assert first == second
    customer = db.query(Customer).one()
    assert customer.email == "ada@example.com"
    assert customer.first_name == "Ada"
    assert customer.last_name == "Lovelace"
    assert customer.phone == "+15555550100"


def test_record_payment_is_idempotent(db):
    booking = make_booking(db, remote_booking_id="bk-1")

    first = BookingRepository.record_payment(db, booking.id, "pi_1", 12000, "usd", "succeeded")
    second = BookingRepository.record_payment(db, booking.id, "pi_1", 12000, "usd", "succeeded")
    db.commit()

    assert first == second
    assert len(BookingRepository.get_payments(db, booking.id)) == 1


def test_get_by_ref_prefers_local_id_then_remote(db):
    booking = make_booking(db, remote_booking_id="bk-1")
    numeric_remote = make_booking(db, remote_booking_id="98765")

    assert BookingRepository.get_by_ref(db, str(booking.id)).id == booking.id
    assert BookingRepository.get_by_ref(db, "bk-1").id == booking.id
    assert BookingRepository.get_by_ref(db, "98765").id == numeric_remote.id
    assert BookingRepository.get_by_ref(db, "missing") is None


def test_upsert_reservation_refreshes_row_on_conflict(db):
    first = make_booking(db, remote_booking_id="bk-1", client_email="old@example.com")
    second = make_booking(
        db, remote_booking_id="bk-1", client_email="new@example.com", meta={"source": "retry"}, state="confirmed"
    )

    assert first.id == second.id
    db.expire_all()
    booking = BookingRepository.get_by_id(db, first.id)
    assert db.query(Booking).count() == 1
    assert booking.client_email == "new@example.com"
    assert booking.meta == {"source": "retry"}
    assert booking.lifecycle_state == "holding"


def test_record_payment_refreshes_status_until_settled(db):
    booking = make_booking(db, remote_booking_id="bk-1")

    payment_id = BookingRepository.record_payment(db, booking.id, "pi_1", 12000, "usd", "processing")
    BookingRepository.record_payment(db, booking.id, "pi_1", 12000, "usd", "succeeded")
    db.commit()
    assert db.query(Payment).one().status == "succeeded"

    BookingRepository.add_refund(db, payment_id, 12000, fully_refunded=True)
    BookingRepository.record_payment(db, booking.id, "pi_1", 12000, "usd", "succeeded")
    db.commit()
    db.expire_all()
    payment = db.query(Payment).one()
    assert payment.status == "refunded"
    assert payment.refunded_cents == 12000
