"""Bookings domain - slot holds, finalization, reschedule and cancel"""

from .router import router

__all__ = ["router"]
