"""Reschedule and cancel - compensating updates across Hapio, Stripe and the local store"""

import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

from sqlalchemy.orm import Session

from ... import email_service
from ...config import RESCHEDULE_CUTOFF_HOURS
from ...errors import BookingNotFound, CutoffViolation, InvalidRequest, RemoteAuthorityError
from ...models import TERMINAL_STATES, Booking, LifecycleState
from ...services.contact_sync import ContactSyncClient
from ...services.hapio_client import HapioClient
from ...services.payment_gateway import StripeGateway
from ...services.service_catalog import ServiceCatalog
from ...shared.validators import split_name
from ...utils.timeutils import ensure_utc, hours_until, utcnow
from .repository import BookingRepository
from .schemas import CancelRequest, CancelResponse, RescheduleRequest, RescheduleResponse

logger = logging.getLogger(__name__)

REFUNDABLE_PAYMENT_STATUSES = ("succeeded", "partially_refunded")


def reschedule_error_message(error: RemoteAuthorityError) -> str:
    """Hapio's scheduling errors rewritten for the customer"""
    message = error.message or ""
    lowered = message.lower()
    if "open schedule" in lowered or "no schedule" in lowered:
        return "That time is no longer available. Please pick a different time slot."
    if "fully booked" in lowered or "not available" in lowered:
        return "That time slot is fully booked. Please pick a different time slot."
    return message or "We couldn't move your booking. Please try again or contact us."


class CompensationService:
    """Service layer for reschedules and cancellations"""

    def __init__(
        self,
        db: Session,
        hapio: HapioClient,
        gateway: Optional[StripeGateway] = None,
        contacts: Optional[ContactSyncClient] = None,
        catalog: Optional[ServiceCatalog] = None,
        clock: Callable[[], datetime] = utcnow,
        send_reschedule: Optional[Callable[..., Awaitable[dict]]] = None,
        send_cancellation: Optional[Callable[..., Awaitable[dict]]] = None,
    ):
        self.db = db
        self.hapio = hapio
        self.gateway = gateway or StripeGateway()
        self.contacts = contacts or ContactSyncClient()
        self.catalog = catalog or ServiceCatalog(db)
        self.clock = clock
        self.send_reschedule = send_reschedule or email_service.send_booking_reschedule
        self.send_cancellation = send_cancellation or email_service.send_booking_cancellation
        self.repo = BookingRepository()

    def _get_booking(self, ref: str) -> Booking:
        booking = self.repo.get_by_ref(self.db, ref)
        if not booking:
            raise BookingNotFound(f"Booking {ref} not found")
        return booking

    # ------------------------------------------------------------------
    # Reschedule
    # ------------------------------------------------------------------

    async def reschedule(self, ref: str, data: RescheduleRequest) -> RescheduleResponse:
        booking = self._get_booking(ref)
        now = ensure_utc(self.clock())

        if booking.lifecycle_state == LifecycleState.CANCELLED.value:
            raise InvalidRequest("Cannot reschedule a cancelled booking")
        if booking.lifecycle_state == LifecycleState.EXPIRED.value:
            raise InvalidRequest("Cannot reschedule an expired booking")
        if not booking.remote_booking_id:
            raise InvalidRequest("Booking has no scheduling reference")
        if not booking.start_at:
            raise InvalidRequest("Booking has no scheduled time")

        new_start = ensure_utc(data.newStart)
        if new_start <= now:
            raise InvalidRequest("New appointment time must be in the future")

        hours_remaining = hours_until(booking.start_at, now)
        if hours_remaining <= RESCHEDULE_CUTOFF_HOURS:
            logger.info(
                f"🚫 Reschedule of booking {booking.id} refused: {hours_remaining:.1f}h before start"
            )
            raise CutoffViolation(
                hours_remaining,
                RESCHEDULE_CUTOFF_HOURS,
                message=(
                    f"Appointments can only be rescheduled more than {RESCHEDULE_CUTOFF_HOURS:g} hours "
                    f"in advance. Please contact us directly."
                ),
            )

        if data.newEnd:
            new_end = ensure_utc(data.newEnd)
            if new_end <= new_start:
                raise InvalidRequest("New end time must be after the new start time")
        else:
            new_end = new_start + timedelta(minutes=self.catalog.duration_for(booking.service_id))

        booking_id = booking.id
        remote_id = booking.remote_booking_id
        old_start = ensure_utc(booking.start_at)
        old_end = ensure_utc(booking.end_at)
        rescheduled_at = now.isoformat()

        # local change is staged, then committed only if Hapio accepts the move
        self.repo.overlay_metadata(
            self.db,
            booking_id,
            {
                "rescheduled_at": rescheduled_at,
                "previousSlot": {
                    "start": old_start.isoformat(),
                    "end": old_end.isoformat() if old_end else None,
                },
            },
            start_at=new_start,
            end_at=new_end,
        )
        try:
            await self.hapio.update_booking(
                remote_id,
                starts_at=new_start,
                ends_at=new_end,
                ignore_schedule=True,
                tz_name=booking.timezone,
            )
        except RemoteAuthorityError as e:
            self.db.rollback()
            logger.error(f"❌ Hapio rejected reschedule of booking {booking_id}: {e.message}")
            raise RemoteAuthorityError(
                reschedule_error_message(e),
                status_code=e.status_code,
                authority=e.authority,
                body=e.body,
                outcome_unknown=e.outcome_unknown,
                field_errors=e.field_errors,
            ) from e
        except Exception:
            self.db.rollback()
            raise
        self.db.commit()
        logger.info(f"🔄 Booking {booking_id} moved from {old_start.isoformat()} to {new_start.isoformat()}")

        self.db.expire_all()
        booking = self.repo.get_by_id(self.db, booking_id)
        self._record_reschedule(booking, old_start, old_end, new_start, new_end)
        await self._after_reschedule(booking, old_start)

        return RescheduleResponse(
            bookingId=booking.id,
            hapioBookingId=booking.remote_booking_id,
            start=new_start,
            end=new_end,
            previousStart=old_start,
        )

    def _record_reschedule(self, booking: Booking, old_start, old_end, new_start, new_end) -> None:
        try:
            self.repo.append_event(
                self.db,
                booking.id,
                "rescheduled",
                data={
                    "from": {"start": old_start.isoformat(), "end": old_end.isoformat() if old_end else None},
                    "to": {"start": new_start.isoformat(), "end": new_end.isoformat()},
                },
            )
            if booking.client_email:
                first, last = split_name(booking.client_name)
                customer_id = self.repo.upsert_customer(
                    self.db, email=booking.client_email, first_name=first, last_name=last, phone=booking.client_phone
                )
                if not booking.customer_id:
                    self.repo.update_fields(self.db, booking.id, customer_id=customer_id)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Failed to record reschedule audit for booking {booking.id}: {e}")

    async def _after_reschedule(self, booking: Booking, old_start: datetime) -> None:
        if not booking.client_email:
            return
        try:
            await self.contacts.upsert_contact(
                email=booking.client_email,
                attributes={"LAST_BOOKING_DATE": ensure_utc(booking.start_at).date().isoformat()},
            )
        except Exception as e:
            logger.warning(f"⚠️ Contact update after reschedule failed for booking {booking.id}: {e}")
        try:
            await self.send_reschedule(booking, previous_start=old_start)
        except Exception as e:
            logger.error(f"❌ Reschedule email failed for booking {booking.id}: {e}")

    # ------------------------------------------------------------------
    # Cancel
    # ------------------------------------------------------------------

    async def cancel(self, ref: str, data: Optional[CancelRequest] = None) -> CancelResponse:
        """
        Refund what is left of the payment (or void an uncaptured one), release
        the Hapio booking and mark the row cancelled. Stripe or Hapio failures
        are logged and the cancellation still proceeds.
        """
        data = data or CancelRequest()
        booking = self._get_booking(ref)
        if booking.lifecycle_state in {s.value for s in TERMINAL_STATES}:
            raise InvalidRequest(f"Booking is already {booking.lifecycle_state}")

        booking_id = booking.id
        refund_total, refund_id, voided = await self._refund_payments(booking_id)

        remote_cancelled = False
        if booking.remote_booking_id:
            try:
                await self.hapio.cancel_booking(booking.remote_booking_id)
                remote_cancelled = True
            except RemoteAuthorityError as e:
                if e.status_code == 404:
                    logger.info(f"Hapio booking {booking.remote_booking_id} already gone")
                    remote_cancelled = True
                else:
                    logger.error(f"❌ Hapio cancel failed for booking {booking_id}, continuing: {e.message}")

        cancelled_at = utcnow().isoformat()
        extra = {}
        if refund_total:
            extra["payment_status"] = "refunded"
        elif voided:
            extra["payment_status"] = "canceled"
        try:
            self.repo.transition_state(self.db, booking_id, LifecycleState.CANCELLED, **extra)
            self.repo.overlay_metadata(
                self.db,
                booking_id,
                {
                    "cancelledAt": cancelled_at,
                    "cancelledBy": data.cancelledBy,
                    "cancellationReason": data.reason,
                    "refundId": refund_id,
                    "hapio": {"status": "cancelled", "cancelledAt": cancelled_at}
                    if remote_cancelled
                    else {"cancelError": True},
                },
            )
            self.repo.append_event(
                self.db,
                booking_id,
                "cancelled",
                data={
                    "cancelledBy": data.cancelledBy,
                    "reason": data.reason,
                    "refundId": refund_id,
                    "refundAmountCents": refund_total,
                    "paymentVoided": voided,
                    "remoteCancelled": remote_cancelled,
                },
            )
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Failed to mark booking {booking_id} cancelled: {e}")
            raise

        self.db.expire_all()
        booking = self.repo.get_by_id(self.db, booking_id)
        if booking.client_email:
            try:
                await self.send_cancellation(booking, refund_cents=refund_total)
            except Exception as e:
                logger.error(f"❌ Cancellation email failed for booking {booking_id}: {e}")

        logger.info(f"🗑️ Booking {booking_id} cancelled (refunded {refund_total} cents)")
        return CancelResponse(
            bookingId=booking_id,
            lifecycleState=booking.lifecycle_state,
            refunded=refund_total > 0,
            refundAmountCents=refund_total,
            refundId=refund_id,
            remoteCancelled=remote_cancelled,
            paymentVoided=voided,
        )

    async def _live_status(self, payment) -> Optional[str]:
        """Stripe's current status for the payment, or the stored one when Stripe can't be reached"""
        try:
            intent = await self.gateway.retrieve_payment_intent(payment.external_transaction_id)
        except Exception as e:
            logger.warning(
                f"⚠️ Could not fetch {payment.external_transaction_id} from Stripe, "
                f"using stored status {payment.status}: {e}"
            )
            return payment.status
        return intent.status

    async def _void_payment(self, booking_id: int, payment) -> bool:
        try:
            await self.gateway.cancel_payment_intent(payment.external_transaction_id)
        except Exception as e:
            logger.error(f"❌ Void of {payment.external_transaction_id} failed, continuing cancel: {e}")
            return False
        try:
            self.repo.set_payment_status(self.db, payment.id, "canceled")
            self.repo.append_event(
                self.db,
                booking_id,
                "voided",
                data={"paymentIntentId": payment.external_transaction_id, "amountCents": payment.amount_cents},
                dedup_key=f"voided:{payment.external_transaction_id}",
            )
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Void of {payment.external_transaction_id} done but not recorded locally: {e}")
        return True

    async def _refund_payments(self, booking_id: int) -> tuple[int, Optional[str], bool]:
        """
        Release the money behind a booking: uncaptured authorizations are voided,
        captured payments refunded for whatever is left. Decided on Stripe's
        live status, since the stored one can lag behind.
        """
        total = 0
        last_refund_id = None
        voided = False
        for payment in self.repo.get_payments(self.db, booking_id):
            if payment.status in ("refunded", "canceled"):
                continue
            remaining = (payment.amount_cents or 0) - (payment.refunded_cents or 0)
            if remaining <= 0:
                continue

            status = await self._live_status(payment)
            if status == "requires_capture":
                voided = await self._void_payment(booking_id, payment) or voided
                continue
            if status not in REFUNDABLE_PAYMENT_STATUSES:
                logger.warning(
                    f"⚠️ Payment {payment.external_transaction_id} is {status}; nothing to refund"
                )
                continue

            try:
                result = await self.gateway.refund(payment.external_transaction_id, amount_cents=remaining)
            except Exception as e:
                logger.error(f"❌ Refund of {payment.external_transaction_id} failed, continuing cancel: {e}")
                continue
            if not result.success:
                logger.error(f"❌ Refund of {payment.external_transaction_id} returned {result.status}")
                continue

            refunded = result.amount_cents or remaining
            try:
                self.repo.add_refund(
                    self.db, payment.id, refunded, fully_refunded=refunded >= remaining
                )
                self.repo.append_event(
                    self.db,
                    booking_id,
                    "refunded",
                    data={
                        "paymentIntentId": payment.external_transaction_id,
                        "refundId": result.refund_id,
                        "amountCents": refunded,
                    },
                    dedup_key=f"refunded:{result.refund_id}" if result.refund_id else None,
                )
                self.db.commit()
            except Exception as e:
                self.db.rollback()
                logger.error(f"❌ Refund {result.refund_id} issued but not recorded locally: {e}")
            total += refunded
            last_refund_id = result.refund_id
        return total, last_refund_id, voided
