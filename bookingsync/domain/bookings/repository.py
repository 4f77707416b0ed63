"""Booking repository - Database operations for bookings, customers, payments and events

Methods only stage work on the session (execute/flush); the calling service owns
the transaction boundary and commits or rolls back.
"""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import case, func, update
from sqlalchemy.orm import Session

from ...database import dialect_insert
from ...models import Booking, BookingEvent, Customer, LifecycleState, Payment, allowed_predecessors
from ...utils.timeutils import ensure_utc, utcnow

# Payment statuses set locally by refunds or voids; a later Stripe status never overwrites them
SETTLED_PAYMENT_STATUSES = ("refunded", "partially_refunded", "canceled")


def merge_metadata(existing: Optional[dict], patch: dict) -> dict:
    """Overlay ``patch`` onto ``existing``; nested dicts are merged one level down"""
    merged = dict(existing or {})
    for key, value in patch.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = {**merged[key], **value}
        else:
            merged[key] = value
    return merged


class BookingRepository:
    """Repository for booking database operations"""

    @staticmethod
    def get_by_id(db: Session, booking_id: int) -> Optional[Booking]:
        return db.query(Booking).filter(Booking.id == booking_id).first()

    @staticmethod
    def get_by_remote_id(db: Session, remote_booking_id: str) -> Optional[Booking]:
        return db.query(Booking).filter(Booking.remote_booking_id == remote_booking_id).first()

    @staticmethod
    def get_by_payment_intent(db: Session, payment_intent_id: str) -> Optional[Booking]:
        return db.query(Booking).filter(Booking.payment_intent_id == payment_intent_id).first()

    @staticmethod
    def get_by_ref(db: Session, ref: str) -> Optional[Booking]:
        """Look up by local id when numeric, otherwise (or as fallback) by remote id"""
        ref = str(ref).strip()
        if ref.isdigit():
            booking = db.query(Booking).filter(Booking.id == int(ref)).first()
            if booking:
                return booking
        return BookingRepository.get_by_remote_id(db, ref)

    @staticmethod
    def upsert_reservation(db: Session, **values: Any) -> int:
        """
        Insert a booking keyed by remote_booking_id, or refresh the customer
        fields and metadata of the existing row. Returns the local id.

        Lifecycle state is never touched on conflict.
        """
        for key in ("start_at", "end_at"):
            if values.get(key) is not None:
                values[key] = ensure_utc(values[key])
        values.setdefault("lifecycle_state", LifecycleState.HOLDING.value)
        values.setdefault("meta", {})

        stmt = dialect_insert(db, Booking).values(**values)
        refresh = {
            "client_name": stmt.excluded.client_name,
            "client_email": stmt.excluded.client_email,
            "client_phone": stmt.excluded.client_phone,
            # "meta" is the column key; the SQL name stays "metadata"
            "meta": stmt.excluded.meta,
            "updated_at": func.now(),
        }
        stmt = stmt.on_conflict_do_update(
            index_elements=[Booking.__table__.c.remote_booking_id], set_=refresh
        ).returning(Booking.__table__.c.id)
        return db.execute(stmt).scalar_one()

    @staticmethod
    def transition_state(db: Session, booking_id: int, target: LifecycleState, **extra_values: Any) -> bool:
        """
        Move a booking forward to ``target`` in one guarded UPDATE.

        Backward moves and moves out of a terminal state match no rows and are
        no-ops. Returns True when the row changed.
        """
        stmt = (
            update(Booking)
            .where(
                Booking.id == booking_id,
                Booking.lifecycle_state.in_(allowed_predecessors(target)),
            )
            .values(lifecycle_state=target.value, updated_at=func.now(), **extra_values)
            .execution_options(synchronize_session=False)
        )
        return db.execute(stmt).rowcount > 0

    @staticmethod
    def update_fields(db: Session, booking_id: int, **values: Any) -> None:
        for key in ("start_at", "end_at"):
            if values.get(key) is not None:
                values[key] = ensure_utc(values[key])
        db.execute(
            update(Booking)
            .where(Booking.id == booking_id)
            .values(updated_at=func.now(), **values)
            .execution_options(synchronize_session=False)
        )

    @staticmethod
    def overlay_metadata(db: Session, booking_id: int, patch: dict, **values: Any) -> dict:
        """Merge ``patch`` into the row's metadata under a row lock; returns the merged metadata"""
        current = (
            db.query(Booking.meta).filter(Booking.id == booking_id).with_for_update().scalar()
        )
        merged = merge_metadata(current, patch)
        BookingRepository.update_fields(db, booking_id, meta=merged, **values)
        return merged

    @staticmethod
    def list_stale_holds(db: Session, older_than: datetime, limit: int = 100) -> list[Booking]:
        return (
            db.query(Booking)
            .filter(
                Booking.lifecycle_state == LifecycleState.HOLDING.value,
                Booking.remote_booking_id.isnot(None),
                Booking.created_at < ensure_utc(older_than),
            )
            .order_by(Booking.created_at.asc())
            .limit(limit)
            .all()
        )

    # Customers

    @staticmethod
    def upsert_customer(
        db: Session,
        email: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> int:
        """Insert or update by lower-cased email; blank values never overwrite stored ones"""
        table = Customer.__table__
        stmt = dialect_insert(db, Customer).values(
            email=email.strip().lower(),
            first_name=first_name,
            last_name=last_name,
            phone=phone,
            last_seen_at=utcnow(),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.email],
            set_={
                "first_name": func.coalesce(func.nullif(stmt.excluded.first_name, ""), table.c.first_name),
                "last_name": func.coalesce(func.nullif(stmt.excluded.last_name, ""), table.c.last_name),
                "phone": func.coalesce(func.nullif(stmt.excluded.phone, ""), table.c.phone),
                "last_seen_at": stmt.excluded.last_seen_at,
                "updated_at": func.now(),
            },
        ).returning(table.c.id)
        return db.execute(stmt).scalar_one()

    # Payments

    @staticmethod
    def record_payment(
        db: Session,
        booking_id: int,
        external_transaction_id: str,
        amount_cents: int,
        currency: str,
        status: str,
        provider: str = "stripe",
    ) -> int:
        """
        Insert the payment once. A repeat for the same transaction id only
        refreshes the status, unless a refund or void already settled it.
        """
        table = Payment.__table__
        stmt = dialect_insert(db, Payment).values(
            booking_id=booking_id,
            external_transaction_id=external_transaction_id,
            amount_cents=amount_cents,
            refunded_cents=0,
            currency=currency,
            status=status,
            provider=provider,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.external_transaction_id],
            set_={
                "status": case(
                    (table.c.status.in_(SETTLED_PAYMENT_STATUSES), table.c.status),
                    else_=stmt.excluded.status,
                ),
                "updated_at": func.now(),
            },
        )
        db.execute(stmt)
        return (
            db.query(Payment.id)
            .filter(Payment.external_transaction_id == external_transaction_id)
            .scalar()
        )

    @staticmethod
    def get_payments(db: Session, booking_id: int) -> list[Payment]:
        return db.query(Payment).filter(Payment.booking_id == booking_id).order_by(Payment.id).all()

    @staticmethod
    def get_payment_by_transaction(db: Session, external_transaction_id: str) -> Optional[Payment]:
        return db.query(Payment).filter(Payment.external_transaction_id == external_transaction_id).first()

    @staticmethod
    def set_payment_status(db: Session, payment_id: int, status: str) -> None:
        db.execute(
            update(Payment)
            .where(Payment.id == payment_id)
            .values(status=status, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )

    @staticmethod
    def add_refund(db: Session, payment_id: int, amount_cents: int, fully_refunded: bool) -> None:
        values: dict[str, Any] = {
            "refunded_cents": Payment.refunded_cents + amount_cents,
            "status": "refunded" if fully_refunded else "partially_refunded",
            "updated_at": func.now(),
        }
        db.execute(
            update(Payment)
            .where(Payment.id == payment_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

    # Events

    @staticmethod
    def append_event(
        db: Session,
        booking_id: int,
        event_type: str,
        data: Optional[dict] = None,
        dedup_key: Optional[str] = None,
    ) -> bool:
        """Append an audit row; with a dedup_key the row is written at most once. Returns True if written"""
        stmt = dialect_insert(db, BookingEvent).values(
            booking_id=booking_id, type=event_type, data=data or {}, dedup_key=dedup_key
        )
        if dedup_key:
            stmt = stmt.on_conflict_do_nothing(index_elements=[BookingEvent.__table__.c.dedup_key])
        return db.execute(stmt).rowcount > 0

    @staticmethod
    def has_event(db: Session, dedup_key: str) -> bool:
        return db.query(BookingEvent.id).filter(BookingEvent.dedup_key == dedup_key).first() is not None

    @staticmethod
    def get_events(db: Session, booking_id: int, event_type: Optional[str] = None) -> list[BookingEvent]:
        query = db.query(BookingEvent).filter(BookingEvent.booking_id == booking_id)
        if event_type:
            query = query.filter(BookingEvent.type == event_type)
        return query.order_by(BookingEvent.id).all()
