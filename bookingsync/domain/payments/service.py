"""Payment service - Stripe intents for held slots and Stripe webhook handling"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from ...config import MIN_CHARGE_CENTS
from ...errors import AmountTooLow, BookingError, InvalidRequest
from ...services.payment_gateway import StripeGateway
from ...services.service_catalog import ServiceCatalog
from ...utils.timeutils import ensure_utc
from ..bookings.finalization_service import FinalizationService
from ..bookings.repository import BookingRepository
from .schemas import CreateIntentRequest, CreateIntentResponse

logger = logging.getLogger(__name__)


class PaymentIntentService:
    """Service layer for opening payment intents"""

    def __init__(self, db: Session, gateway: StripeGateway, catalog: Optional[ServiceCatalog] = None):
        self.db = db
        self.gateway = gateway
        self.catalog = catalog or ServiceCatalog(db)
        self.repo = BookingRepository()

    @staticmethod
    def check_minimum(amount_cents: int) -> None:
        if amount_cents < MIN_CHARGE_CENTS:
            logger.warning(f"🚫 Amount {amount_cents} cents below minimum {MIN_CHARGE_CENTS}")
            raise AmountTooLow(amount_cents, MIN_CHARGE_CENTS)

    async def create_intent(self, data: CreateIntentRequest) -> CreateIntentResponse:
        slot_start = ensure_utc(data.slotStart)
        slot_end = ensure_utc(data.slotEnd)
        if slot_end <= slot_start:
            raise InvalidRequest("Slot end must be after slot start")

        # an explicit amount is checked before anything else is resolved
        if data.amountCents is not None:
            self.check_minimum(data.amountCents)

        service = self.catalog.resolve(data.serviceId)
        if data.amountCents is not None:
            amount_cents = data.amountCents
        elif service.price_cents is not None:
            amount_cents = service.price_cents
        else:
            raise InvalidRequest(f"Service '{service.slug}' has no price configured")
        self.check_minimum(amount_cents)

        booking = self.repo.get_by_remote_id(self.db, data.hapioBookingId) if data.hapioBookingId else None
        email = data.email or (booking.client_email if booking else None)
        name = data.name or (booking.client_name if booking else None)
        phone = data.phone or (booking.client_phone if booking else None)

        # enough to rebuild the booking row if it is ever lost
        metadata = {
            "service_id": service.local_id or service.slug,
            "service_slug": service.slug,
            "service_name": service.name,
            "remote_service_id": service.remote_service_id,
            "resource_id": booking.resource_id if booking else service.resource_id,
            "slot_start": slot_start.isoformat(),
            "slot_end": slot_end.isoformat(),
            "timezone": data.timezone or (booking.timezone if booking else None),
            "hapio_booking_id": data.hapioBookingId,
            "customer_email": email,
            "customer_name": name,
            "customer_phone": phone,
        }

        idempotency_key = None
        if data.hapioBookingId:
            idempotency_key = f"booking-intent:{data.hapioBookingId}:{amount_cents}"

        intent = await self.gateway.create_payment_intent(
            amount_cents=amount_cents,
            metadata=metadata,
            receipt_email=email,
            idempotency_key=idempotency_key,
        )

        if booking:
            try:
                self.repo.update_fields(
                    self.db, booking.id, payment_intent_id=intent.id, payment_status=intent.status
                )
                self.repo.overlay_metadata(
                    self.db, booking.id, {"paymentIntentId": intent.id, "amountCents": amount_cents}
                )
                self.db.commit()
            except Exception as e:
                self.db.rollback()
                # the intent metadata still links the payment to the booking
                logger.error(f"❌ Could not attach intent {intent.id} to booking {booking.id}: {e}")

        return CreateIntentResponse(
            clientSecret=intent.client_secret,
            paymentIntentId=intent.id,
            amountCents=amount_cents,
            amountDollars=round(amount_cents / 100, 2),
        )


class PaymentWebhookService:
    """Applies Stripe payment_intent.* events to bookings"""

    def __init__(self, db: Session, finalizer: FinalizationService):
        self.db = db
        self.finalizer = finalizer
        self.repo = BookingRepository()

    async def handle_event(self, event: dict) -> dict:
        event_type = event.get("type", "")
        intent = ((event.get("data") or {}).get("object")) or {}
        intent_id = intent.get("id")
        metadata = intent.get("metadata") or {}
        remote_booking_id = metadata.get("hapio_booking_id")

        logger.info(f"📥 Stripe event {event.get('id')} ({event_type}) for {intent_id}")

        if event_type == "payment_intent.succeeded":
            if not remote_booking_id:
                return {"received": True, "ignored": True}
            try:
                result = await self.finalizer.finalize(intent_id, remote_booking_id)
            except BookingError as e:
                # Stripe retries on non-2xx; only retry what a retry can fix
                if e.status_code >= 500:
                    raise
                logger.error(f"❌ Finalize from Stripe webhook failed for {intent_id}: {e.message}")
                return {"received": True, "finalized": False, "error": e.code}
            return {"received": True, "finalized": True, "bookingId": result.bookingId}

        if event_type in ("payment_intent.payment_failed", "payment_intent.canceled"):
            status = "failed" if event_type.endswith("payment_failed") else "canceled"
            booking = None
            if remote_booking_id:
                booking = self.repo.get_by_remote_id(self.db, remote_booking_id)
            if booking is None and intent_id:
                booking = self.repo.get_by_payment_intent(self.db, intent_id)
            if booking is None:
                return {"received": True, "ignored": True}
            self.repo.update_fields(self.db, booking.id, payment_status=status, payment_intent_id=intent_id)
            self.db.commit()
            logger.info(f"Booking {booking.id} payment status -> {status}")
            return {"received": True, "bookingId": booking.id, "paymentStatus": status}

        return {"received": True, "ignored": True}
