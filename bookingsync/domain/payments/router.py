"""Payment router - payment intents and the Stripe webhook"""

import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from ...database import get_db
from ...dependencies import get_contact_sync, get_hapio_client, get_payment_gateway
from ...rate_limiter import create_rate_limiter
from ...services.contact_sync import ContactSyncClient
from ...services.hapio_client import HapioClient
from ...services.payment_gateway import StripeGateway
from ..bookings.finalization_service import FinalizationService
from .schemas import CreateIntentRequest, CreateIntentResponse
from .service import PaymentIntentService, PaymentWebhookService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])
webhooks_router = APIRouter(prefix="/webhooks", tags=["Webhooks"])

intent_rate_limit = create_rate_limiter(limit=20, window_seconds=60, key_prefix="payment_intent")


def get_payment_intent_service(
    db: Session = Depends(get_db), gateway: StripeGateway = Depends(get_payment_gateway)
) -> PaymentIntentService:
    """Dependency injection for PaymentIntentService"""
    return PaymentIntentService(db, gateway)


@router.post("/create-intent", response_model=CreateIntentResponse)
async def create_payment_intent(
    data: CreateIntentRequest,
    service: PaymentIntentService = Depends(get_payment_intent_service),
    _: None = Depends(intent_rate_limit),
):
    """Open a Stripe payment intent for a held slot"""
    return await service.create_intent(data)


@webhooks_router.post("/stripe")
async def stripe_webhook(
    request: Request,
    db: Session = Depends(get_db),
    hapio: HapioClient = Depends(get_hapio_client),
    gateway: StripeGateway = Depends(get_payment_gateway),
    contacts: ContactSyncClient = Depends(get_contact_sync),
):
    """Stripe payment events; succeeded intents re-enter finalization"""
    payload = await request.body()
    signature = request.headers.get("Stripe-Signature", "")

    try:
        event = gateway.construct_event(payload, signature)
    except stripe.SignatureVerificationError as e:
        logger.error(f"🚫 Stripe webhook signature invalid: {e}")
        raise HTTPException(status_code=400, detail="Invalid signature") from e
    except ValueError as e:
        logger.error(f"❌ Stripe webhook payload invalid: {e}")
        raise HTTPException(status_code=400, detail="Invalid payload") from e

    finalizer = FinalizationService(db, hapio, gateway, contacts)
    return await PaymentWebhookService(db, finalizer).handle_event(event)
