import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import stripe
from starlette.concurrency import run_in_threadpool

from ..config import STRIPE_CURRENCY, STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET
from ..errors import ConfigurationError, RemoteAuthorityError

logger = logging.getLogger(__name__)

# Statuses from which a booking may be finalized
CHARGEABLE_STATUSES = frozenset({"succeeded", "processing", "requires_capture"})


def _as_dict(obj: Any) -> dict:
    if obj is None:
        return {}
    if isinstance(obj, dict):
        return dict(obj)
    to_dict = getattr(obj, "to_dict", None) or getattr(obj, "to_dict_recursive", None)
    return dict(to_dict()) if to_dict else {}


@dataclass
class PaymentIntentInfo:
    id: str
    status: Optional[str]
    amount_cents: int
    currency: str = "usd"
    client_secret: Optional[str] = None
    latest_charge: Optional[str] = None
    metadata: dict = field(default_factory=dict)

    @property
    def is_chargeable(self) -> bool:
        return self.status in CHARGEABLE_STATUSES

    @classmethod
    def from_stripe(cls, intent: Any) -> "PaymentIntentInfo":
        data = _as_dict(intent)
        latest_charge = data.get("latest_charge")
        if latest_charge is not None and not isinstance(latest_charge, str):
            latest_charge = _as_dict(latest_charge).get("id")
        return cls(
            id=data.get("id"),
            status=data.get("status"),
            amount_cents=int(data.get("amount") or 0),
            currency=data.get("currency") or STRIPE_CURRENCY,
            client_secret=data.get("client_secret"),
            latest_charge=latest_charge,
            metadata={k: v for k, v in _as_dict(data.get("metadata")).items() if v is not None},
        )


@dataclass
class RefundResult:
    success: bool
    refund_id: Optional[str] = None
    amount_cents: int = 0
    status: Optional[str] = None


class StripeGateway:
    """Stripe PaymentIntents; blocking SDK calls run in the threadpool"""

    def __init__(self, api_key: Optional[str] = None, webhook_secret: Optional[str] = None):
        self.api_key = api_key if api_key is not None else STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret if webhook_secret is not None else STRIPE_WEBHOOK_SECRET

    def _configure(self) -> None:
        if not self.api_key:
            logger.error("STRIPE_SECRET_KEY not configured in environment variables")
            raise ConfigurationError("Stripe is not configured")
        stripe.api_key = self.api_key
        stripe.max_network_retries = 1

    @staticmethod
    def _wrap(action: str, exc: "stripe.StripeError") -> RemoteAuthorityError:
        status = getattr(exc, "http_status", None) or 502
        message = getattr(exc, "user_message", None) or str(exc) or f"Stripe {action} failed"
        logger.error(f"❌ Stripe {action} failed ({status}): {exc}")
        return RemoteAuthorityError(
            message,
            status_code=status,
            authority="stripe",
            body=getattr(exc, "json_body", None),
            outcome_unknown=isinstance(exc, stripe.APIConnectionError),
        )

    async def create_payment_intent(
        self,
        amount_cents: int,
        metadata: dict[str, Any],
        currency: Optional[str] = None,
        receipt_email: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> PaymentIntentInfo:
        self._configure()
        params: dict[str, Any] = {
            "amount": amount_cents,
            "currency": currency or STRIPE_CURRENCY,
            "automatic_payment_methods": {"enabled": True},
            # Stripe metadata values must be strings
            "metadata": {k: str(v) for k, v in metadata.items() if v is not None},
        }
        if receipt_email:
            params["receipt_email"] = receipt_email
        if idempotency_key:
            params["idempotency_key"] = idempotency_key

        try:
            intent = await run_in_threadpool(stripe.PaymentIntent.create, **params)
        except stripe.StripeError as e:
            raise self._wrap("create_payment_intent", e) from e

        info = PaymentIntentInfo.from_stripe(intent)
        logger.info(f"💳 Created payment intent {info.id} for {amount_cents} cents")
        return info

    async def retrieve_payment_intent(self, payment_intent_id: str) -> PaymentIntentInfo:
        self._configure()
        try:
            intent = await run_in_threadpool(stripe.PaymentIntent.retrieve, payment_intent_id)
        except stripe.StripeError as e:
            raise self._wrap("retrieve_payment_intent", e) from e
        return PaymentIntentInfo.from_stripe(intent)

    async def refund(
        self,
        payment_intent_id: str,
        amount_cents: Optional[int] = None,
        reason: Optional[str] = "requested_by_customer",
    ) -> RefundResult:
        """Refund a payment; omitting amount_cents refunds what is left"""
        self._configure()
        params: dict[str, Any] = {"payment_intent": payment_intent_id}
        if amount_cents:
            params["amount"] = amount_cents
        if reason:
            params["reason"] = reason

        try:
            refund = _as_dict(await run_in_threadpool(stripe.Refund.create, **params))
        except stripe.StripeError as e:
            raise self._wrap("refund", e) from e

        status = refund.get("status")
        result = RefundResult(
            success=status in ("succeeded", "pending"),
            refund_id=refund.get("id"),
            amount_cents=int(refund.get("amount") or 0),
            status=status,
        )
        logger.info(f"💸 Refund {result.refund_id} for {payment_intent_id}: {status}")
        return result

    async def cancel_payment_intent(
        self, payment_intent_id: str, reason: Optional[str] = "requested_by_customer"
    ) -> PaymentIntentInfo:
        """Void an authorization that was never captured"""
        self._configure()
        params: dict[str, Any] = {}
        if reason:
            params["cancellation_reason"] = reason
        try:
            intent = await run_in_threadpool(stripe.PaymentIntent.cancel, payment_intent_id, **params)
        except stripe.StripeError as e:
            raise self._wrap("cancel_payment_intent", e) from e

        info = PaymentIntentInfo.from_stripe(intent)
        logger.info(f"🚫 Voided payment intent {payment_intent_id}: {info.status}")
        return info

    def construct_event(self, payload: bytes, signature: str) -> dict:
        """Verify a Stripe webhook delivery and return the event as a dict"""
        if not self.webhook_secret:
            raise ConfigurationError("Stripe webhook secret not configured")
        event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        return _as_dict(event)
