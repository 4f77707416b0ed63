"""Folds Hapio webhook events into the local booking row"""

import logging
from typing import Any

from sqlalchemy.orm import Session

from ...errors import ReconciliationMiss
from ...models import LifecycleState
from ...utils.timeutils import parse_iso, utcnow
from ..bookings.repository import BookingRepository
from .events import HapioEvent

logger = logging.getLogger(__name__)


class WebhookReconciler:
    """
    Overlay-merge reconciliation.

    Remote fields are overlaid onto metadata.hapio (never replaced wholesale)
    and the lifecycle only moves forward, so duplicate or out-of-order
    deliveries converge on the same row state.
    """

    def __init__(self, db: Session):
        self.db = db
        self.repo = BookingRepository()

    def apply(self, event: HapioEvent) -> dict[str, Any]:
        remote_id = event.booking_id
        booking = self.repo.get_by_remote_id(self.db, remote_id)
        if not booking:
            logger.warning(f"⚠️ Hapio {event.type} for unknown booking {remote_id}; acknowledging")
            raise ReconciliationMiss(remote_id)

        now = utcnow().isoformat()
        status = event.status_label()
        payload = event.booking.model_dump(exclude_none=True) if event.booking else None

        hapio_patch: dict[str, Any] = {
            "bookingId": remote_id,
            "lastEventAt": now,
            "lastEventType": event.type,
            "lastPayload": payload,
        }
        if status:
            hapio_patch["status"] = status
        if event.booking and event.booking.is_temporary is not None:
            hapio_patch["isTemporary"] = event.booking.is_temporary

        target = event.target_state()
        if target == LifecycleState.CONFIRMED:
            hapio_patch["confirmedAt"] = now
        elif target == LifecycleState.CANCELLED:
            hapio_patch["cancelledAt"] = now

        # remote slot times win when pushed
        field_updates = {}
        if event.booking:
            starts_at = parse_iso(event.booking.starts_at)
            ends_at = parse_iso(event.booking.ends_at)
            if starts_at:
                field_updates["start_at"] = starts_at
            if ends_at:
                field_updates["end_at"] = ends_at
            if event.booking.resource_id:
                field_updates["resource_id"] = event.booking.resource_id

        try:
            self.repo.overlay_metadata(self.db, booking.id, {"hapio": hapio_patch}, **field_updates)
            moved = False
            if target is not None:
                moved = self.repo.transition_state(self.db, booking.id, target)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Failed to apply Hapio {event.type} to booking {booking.id}: {e}")
            raise

        self.db.expire_all()
        booking = self.repo.get_by_id(self.db, booking.id)
        if target is not None and not moved:
            logger.info(
                f"Hapio {event.type} for booking {booking.id} left state at {booking.lifecycle_state}"
            )
        else:
            logger.info(f"🔁 Hapio {event.type} applied to booking {booking.id} -> {booking.lifecycle_state}")

        return {
            "ok": True,
            "bookingId": booking.id,
            "status": status,
            "lifecycleState": booking.lifecycle_state,
        }
