"""Hapio webhook router"""

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from ...database import get_db
from ...errors import ReconciliationMiss
from ...webhook_security import verify_hapio_webhook
from .events import PingEvent, parse_event
from .reconciler import WebhookReconciler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@router.get("/hapio")
async def hapio_webhook_reachability():
    """Reachability check for configuring the webhook in Hapio"""
    return {"message": "Hapio webhook endpoint is accessible", "path": "/webhooks/hapio", "method": "POST"}


@router.post("/hapio")
async def hapio_webhook(request: Request, db: Session = Depends(get_db)):
    # raises SignatureInvalid (401) before anything is parsed or written
    raw_body = await verify_hapio_webhook(request)

    try:
        body = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.error(f"❌ Hapio webhook body is not valid JSON: {e}")
        raise HTTPException(status_code=400, detail="Invalid JSON payload") from e
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    event = parse_event(body)
    if isinstance(event, PingEvent):
        return {"ok": True, "ping": True}

    if not event.booking_id:
        logger.warning(f"⚠️ Hapio {event.type} without a booking id; ignoring")
        return {"ok": True, "ignored": True}

    try:
        return WebhookReconciler(db).apply(event)
    except ReconciliationMiss:
        return {"ok": True, "missing": True}
