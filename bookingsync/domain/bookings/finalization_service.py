"""
Finalization - turns a paid temporary hold into a confirmed booking

Sequence (a retryable saga, not an atomic commit):
1. payment must be chargeable at Stripe
2. find the booking, or rebuild it from the payment intent metadata
3-4. customer, payment row and "finalized" event in one local transaction
5. confirm the hold at Hapio
6. contact sync, confirmation email, "email_sent" event (best-effort)

Local writes are idempotent upserts, so calling finalize again with the same
payment intent only retries the Hapio confirm.
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from sqlalchemy.orm import Session

from ... import email_service
from ...errors import BookingNotFound, InvalidRequest, PaymentNotChargeable
from ...models import TERMINAL_STATES, Booking, LifecycleState
from ...services.contact_sync import ContactSyncClient
from ...services.hapio_client import HapioClient
from ...services.payment_gateway import PaymentIntentInfo, StripeGateway
from ...shared.validators import split_name
from ...utils.timeutils import parse_iso, utcnow
from .repository import BookingRepository
from .schemas import CustomerInfo, FinalizeResponse

logger = logging.getLogger(__name__)


@dataclass
class _CustomerFields:
    email: Optional[str]
    first_name: Optional[str]
    last_name: Optional[str]
    phone: Optional[str]
    display_name: Optional[str]


class FinalizationService:
    """Service layer for converting paid holds into confirmed bookings"""

    def __init__(
        self,
        db: Session,
        hapio: HapioClient,
        gateway: StripeGateway,
        contacts: Optional[ContactSyncClient] = None,
        send_confirmation: Optional[Callable[..., Awaitable[dict]]] = None,
    ):
        self.db = db
        self.hapio = hapio
        self.gateway = gateway
        self.contacts = contacts or ContactSyncClient()
        self.send_confirmation = send_confirmation or email_service.send_booking_confirmation
        self.repo = BookingRepository()

    async def finalize(
        self,
        payment_intent_id: str,
        remote_booking_id: Optional[str] = None,
        customer: Optional[CustomerInfo] = None,
    ) -> FinalizeResponse:
        # 1. payment gate; nothing else is touched when it fails
        intent = await self.gateway.retrieve_payment_intent(payment_intent_id)
        if not intent.is_chargeable:
            logger.warning(f"🚫 Payment {payment_intent_id} not chargeable (status: {intent.status})")
            raise PaymentNotChargeable(payment_intent_id, intent.status)

        remote_booking_id = remote_booking_id or intent.metadata.get("hapio_booking_id")
        if not remote_booking_id:
            raise BookingNotFound("No booking reference on request or payment metadata")
        self._check_intent_belongs_to(intent, remote_booking_id)

        # 2. locate or rebuild
        booking, reconstructed = self._find_or_reconstruct(remote_booking_id, intent)

        # 3-4. local durability first
        fields = self._customer_fields(customer, booking, intent)
        try:
            customer_id = None
            if fields.email:
                customer_id = self.repo.upsert_customer(
                    self.db,
                    email=fields.email,
                    first_name=fields.first_name,
                    last_name=fields.last_name,
                    phone=fields.phone,
                )
            else:
                logger.warning(f"⚠️ No customer email for booking {booking.id}; skipping customer upsert")

            payment_id = self.repo.record_payment(
                self.db,
                booking_id=booking.id,
                external_transaction_id=intent.id,
                amount_cents=intent.amount_cents,
                currency=intent.currency,
                status=intent.status,
            )
            self.repo.append_event(
                self.db,
                booking.id,
                "finalized",
                data={
                    "paymentIntentId": intent.id,
                    "amountCents": intent.amount_cents,
                    "status": intent.status,
                    "hapioBookingId": remote_booking_id,
                    "reconstructed": reconstructed,
                },
                dedup_key=f"finalized:{intent.id}",
            )

            updates = {"payment_intent_id": intent.id, "payment_status": intent.status}
            if customer_id:
                updates["customer_id"] = customer_id
            if fields.email and not booking.client_email:
                updates["client_email"] = fields.email
            if fields.display_name and not booking.client_name:
                updates["client_name"] = fields.display_name
            if fields.phone and not booking.client_phone:
                updates["client_phone"] = fields.phone
            self.repo.update_fields(self.db, booking.id, **updates)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Failed to persist finalization for {payment_intent_id}: {e}")
            raise

        booking_id = booking.id
        self.db.expire_all()
        booking = self.repo.get_by_id(self.db, booking_id)

        # 5. remote confirm; a failure here is surfaced (paid but not confirmed)
        if booking.lifecycle_state == LifecycleState.CONFIRMED.value:
            logger.info(f"Booking {booking_id} already confirmed; skipping Hapio confirm")
        elif booking.lifecycle_state in {s.value for s in TERMINAL_STATES}:
            logger.warning(
                f"⚠️ Booking {booking_id} is {booking.lifecycle_state} but payment {intent.id} "
                f"succeeded; needs operator review"
            )
        else:
            await self.hapio.confirm_booking(
                remote_booking_id,
                metadata={
                    "paymentIntentId": intent.id,
                    "paymentStatus": intent.status,
                    "finalizedAt": utcnow().isoformat(),
                },
            )
            confirmed_at = utcnow().isoformat()
            self.repo.transition_state(self.db, booking_id, LifecycleState.CONFIRMED)
            self.repo.overlay_metadata(
                self.db,
                booking_id,
                {
                    "paymentIntentId": intent.id,
                    "hapio": {"status": "confirmed", "isTemporary": False, "confirmedAt": confirmed_at},
                },
            )
            self.db.commit()
            logger.info(f"✅ Booking {booking_id} confirmed at Hapio ({remote_booking_id})")

        self.db.expire_all()
        booking = self.repo.get_by_id(self.db, booking_id)

        # 6. best-effort side channels
        await self._sync_contact(fields)
        email_sent = await self._send_confirmation_once(booking, intent)

        return FinalizeResponse(
            bookingId=booking.id,
            hapioBookingId=booking.remote_booking_id,
            customerId=booking.customer_id,
            paymentId=payment_id,
            lifecycleState=booking.lifecycle_state,
            paymentStatus=booking.payment_status,
            reconstructed=reconstructed,
            emailSent=email_sent,
        )

    def _check_intent_belongs_to(self, intent: PaymentIntentInfo, remote_booking_id: str) -> None:
        """A payment confirms only the booking it was created for"""
        paid_for = intent.metadata.get("hapio_booking_id")
        if paid_for and paid_for != remote_booking_id:
            logger.error(
                f"🚫 Payment {intent.id} was made for booking {paid_for}, not {remote_booking_id}"
            )
            raise InvalidRequest(f"Payment {intent.id} does not belong to booking {remote_booking_id}")

        payment = self.repo.get_payment_by_transaction(self.db, intent.id)
        if payment:
            owner = self.repo.get_by_id(self.db, payment.booking_id)
            if owner and owner.remote_booking_id != remote_booking_id:
                logger.error(
                    f"🚫 Payment {intent.id} already settles booking {owner.remote_booking_id}, "
                    f"refusing {remote_booking_id}"
                )
                raise InvalidRequest(f"Payment {intent.id} does not belong to booking {remote_booking_id}")

    def _find_or_reconstruct(self, remote_booking_id: str, intent: PaymentIntentInfo) -> tuple[Booking, bool]:
        booking = self.repo.get_by_remote_id(self.db, remote_booking_id)
        if booking:
            return booking, False

        meta = intent.metadata
        start = parse_iso(meta.get("slot_start"))
        end = parse_iso(meta.get("slot_end"))
        service_slug = meta.get("service_slug") or meta.get("service_id")
        if not (start and end and service_slug):
            logger.error(
                f"❌ Booking {remote_booking_id} missing locally and payment {intent.id} "
                f"metadata is not enough to rebuild it"
            )
            raise BookingNotFound(f"Booking {remote_booking_id} not found")

        logger.warning(f"🩹 Rebuilding missing booking {remote_booking_id} from payment {intent.id}")
        try:
            booking_id = self.repo.upsert_reservation(
                self.db,
                remote_booking_id=remote_booking_id,
                service_id=service_slug,
                service_name=meta.get("service_name") or service_slug,
                resource_id=meta.get("resource_id"),
                start_at=start,
                end_at=end,
                timezone=meta.get("timezone"),
                client_name=meta.get("customer_name"),
                client_email=meta.get("customer_email"),
                client_phone=meta.get("customer_phone"),
                meta={
                    "source": "payment_intent",
                    "reconstructed": True,
                    "reconstructedAt": utcnow().isoformat(),
                    "timezone": meta.get("timezone"),
                    "slot": {
                        "start": start.isoformat(),
                        "end": end.isoformat(),
                        "serviceSlug": service_slug,
                        "remoteServiceId": meta.get("remote_service_id"),
                    },
                },
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return self.repo.get_by_id(self.db, booking_id), True

    @staticmethod
    def _customer_fields(
        customer: Optional[CustomerInfo], booking: Booking, intent: PaymentIntentInfo
    ) -> _CustomerFields:
        email = (customer.email if customer else None) or booking.client_email or intent.metadata.get("customer_email")
        name = (customer.display_name if customer else None) or booking.client_name or intent.metadata.get("customer_name")
        phone = (customer.phone if customer else None) or booking.client_phone or intent.metadata.get("customer_phone")

        first, last = split_name(name)
        if customer and customer.firstName:
            first = customer.firstName
        if customer and customer.lastName:
            last = customer.lastName
        return _CustomerFields(
            email=email.strip().lower() if email else None,
            first_name=first,
            last_name=last,
            phone=phone,
            display_name=name,
        )

    async def _sync_contact(self, fields: _CustomerFields) -> None:
        if not fields.email:
            return
        try:
            await self.contacts.upsert_contact(
                email=fields.email,
                first_name=fields.first_name,
                last_name=fields.last_name,
                phone=fields.phone,
            )
        except Exception as e:
            logger.warning(f"⚠️ Contact sync failed for {fields.email}: {e}")

    async def _send_confirmation_once(self, booking: Booking, intent: PaymentIntentInfo) -> bool:
        dedup_key = f"email_sent:{intent.id}"
        if not booking.client_email or booking.lifecycle_state != LifecycleState.CONFIRMED.value:
            return False
        if self.repo.has_event(self.db, dedup_key):
            logger.info(f"Confirmation for booking {booking.id} already sent")
            return False
        try:
            await self.send_confirmation(booking, amount_cents=intent.amount_cents)
        except Exception as e:
            logger.error(f"❌ Confirmation email failed for booking {booking.id}: {e}")
            return False

        try:
            self.repo.append_event(
                self.db,
                booking.id,
                "email_sent",
                data={"kind": "confirmation", "to": booking.client_email, "paymentIntentId": intent.id},
                dedup_key=dedup_key,
            )
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.warning(f"⚠️ Could not record email_sent for booking {booking.id}: {e}")
        return True
