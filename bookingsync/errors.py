"""
Booking error taxonomy

Every error a booking flow can surface to a caller derives from BookingError and
carries its HTTP status, a stable machine code and any extra payload the UI needs.
main.py renders them as {"error": code, "message": ..., **extra}.
"""

from typing import Any, Optional


class BookingError(Exception):
    """Base class for errors surfaced by booking flows"""

    status_code = 400
    code = "booking_error"

    def __init__(self, message: str, status_code: Optional[int] = None, **extra: Any):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.extra = extra

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message, **self.extra}


class ConfigurationError(BookingError):
    """A required integration (Hapio token, Stripe key) is not configured"""

    status_code = 500
    code = "configuration_error"


class InvalidRequest(BookingError):
    """Malformed input or an unresolvable service mapping; raised before any external call"""

    code = "invalid_request"


class BookingNotFound(BookingError):
    status_code = 404
    code = "booking_not_found"


class AmountTooLow(BookingError):
    code = "amount_too_low"

    def __init__(self, amount_cents: int, minimum_cents: int):
        super().__init__(
            f"Amount must be at least ${minimum_cents / 100:.2f}",
            amount_cents=amount_cents,
            minimum_cents=minimum_cents,
        )


class PaymentNotChargeable(BookingError):
    status_code = 402
    code = "payment_not_chargeable"

    def __init__(self, payment_intent_id: str, status: Optional[str]):
        super().__init__(
            f"Payment {payment_intent_id} is not chargeable (status: {status})",
            payment_intent_id=payment_intent_id,
            payment_status=status,
        )


class RemoteAuthorityError(BookingError):
    """
    Error returned by (or while talking to) Hapio or Stripe.

    status_code mirrors the upstream status so callers can react to it.
    outcome_unknown is set for timeouts: the remote side may or may not have
    applied the write, so the caller must retry an idempotent path rather than
    assume nothing happened.
    """

    code = "remote_authority_error"

    def __init__(
        self,
        message: str,
        status_code: int = 502,
        authority: str = "hapio",
        body: Any = None,
        outcome_unknown: bool = False,
        field_errors: Optional[dict] = None,
    ):
        extra: dict[str, Any] = {"authority": authority, "upstream_status": status_code}
        if outcome_unknown:
            extra["outcome_unknown"] = True
        if field_errors:
            extra["field_errors"] = field_errors
        super().__init__(message, status_code=status_code, **extra)
        self.authority = authority
        self.body = body
        self.outcome_unknown = outcome_unknown
        self.field_errors = field_errors or {}


class CutoffViolation(BookingError):
    code = "cutoff_violation"

    def __init__(self, hours_remaining: float, cutoff_hours: float, message: Optional[str] = None):
        super().__init__(
            message
            or f"Changes must be made at least {cutoff_hours:g} hours before the appointment.",
            hours_remaining=round(hours_remaining, 1),
            cutoff_hours=cutoff_hours,
        )
        self.hours_remaining = round(hours_remaining, 1)


class SignatureInvalid(BookingError):
    status_code = 401
    code = "invalid_signature"


class ReconciliationMiss(BookingError):
    """Webhook for a booking we do not track; acknowledged by the router, never surfaced"""

    status_code = 200
    code = "reconciliation_miss"

    def __init__(self, remote_booking_id: str):
        super().__init__(
            f"No local booking for remote id {remote_booking_id}",
            remote_booking_id=remote_booking_id,
        )
        self.remote_booking_id = remote_booking_id
