"""Webhooks domain - Hapio push notifications"""

from .router import router

__all__ = ["router"]
