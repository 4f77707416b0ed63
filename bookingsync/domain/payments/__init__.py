"""Payments domain - Stripe intents and payment webhooks"""

from .router import router, webhooks_router

__all__ = ["router", "webhooks_router"]
