"""Slot reservation - temporary Hapio hold plus the local booking row"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from ...errors import InvalidRequest
from ...models import LifecycleState
from ...services.hapio_client import HapioClient
from ...services.service_catalog import ServiceCatalog
from ...utils.timeutils import ensure_utc, utcnow
from .repository import BookingRepository
from .schemas import CustomerInfo, LockRequest, LockResponse

logger = logging.getLogger(__name__)


def customer_snapshot(customer: Optional[CustomerInfo]) -> dict:
    """Normalized customer fields for metadata; blanks are already None"""
    if not customer:
        return {"name": None, "email": None, "phone": None}
    return {"name": customer.display_name, "email": customer.email, "phone": customer.phone}


class ReservationService:
    """Service layer for slot holds"""

    def __init__(self, db: Session, hapio: HapioClient, catalog: Optional[ServiceCatalog] = None):
        self.db = db
        self.hapio = hapio
        self.catalog = catalog or ServiceCatalog(db)
        self.repo = BookingRepository()

    async def lock_slot(self, data: LockRequest) -> LockResponse:
        """
        Hold a slot with Hapio and mirror it locally.

        Validation happens before any external call. If Hapio rejects the hold
        its error propagates and no local row is written.
        """
        start = ensure_utc(data.start)
        end = ensure_utc(data.end)
        if end <= start:
            raise InvalidRequest("End time must be after start time")

        service = self.catalog.resolve(data.serviceId)
        resource_id = data.resourceId or service.resource_id
        customer = customer_snapshot(data.customer)
        locked_at = utcnow().isoformat()

        remote = await self.hapio.create_temporary_booking(
            service_id=service.remote_service_id,
            location_id=service.location_id,
            starts_at=start,
            ends_at=end,
            resource_id=resource_id,
            metadata={
                "source": "website",
                "serviceSlug": service.slug,
                "timezone": data.timezone,
                "customer": customer,
                "lockedAt": locked_at,
            },
            tz_name=data.timezone,
        )

        metadata = {
            "source": "website",
            "lockedAt": locked_at,
            "timezone": data.timezone,
            "customer": customer,
            "slot": {
                "start": start.isoformat(),
                "end": end.isoformat(),
                "serviceSlug": service.slug,
                "remoteServiceId": service.remote_service_id,
                "locationId": service.location_id,
                "resourceId": remote.resource_id or resource_id,
            },
            "hapio": {"bookingId": remote.id, "status": "temporary", "isTemporary": True},
        }

        try:
            booking_id = self.repo.upsert_reservation(
                self.db,
                remote_booking_id=remote.id,
                service_id=service.slug,
                service_name=service.name,
                resource_id=remote.resource_id or resource_id,
                start_at=start,
                end_at=end,
                timezone=data.timezone,
                client_name=customer["name"],
                client_email=customer["email"],
                client_phone=customer["phone"],
                lifecycle_state=LifecycleState.HOLDING.value,
                meta=metadata,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            # the remote hold exists; Hapio expires it on its own if nobody pays
            logger.error(f"❌ Failed to persist hold {remote.id} locally")
            raise

        logger.info(f"🔒 Slot locked: booking {booking_id} / Hapio {remote.id} ({service.slug} {start.isoformat()})")
        return LockResponse(
            bookingId=booking_id,
            hapioBookingId=remote.id,
            serviceId=service.slug,
            start=start,
            end=end,
            timezone=data.timezone,
            isTemporary=True,
        )
