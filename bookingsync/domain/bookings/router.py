"""Booking router - FastAPI endpoints for the booking lifecycle"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...database import get_db
from ...dependencies import get_contact_sync, get_hapio_client, get_payment_gateway
from ...errors import BookingNotFound
from ...rate_limiter import create_rate_limiter
from ...services.contact_sync import ContactSyncClient
from ...services.hapio_client import HapioClient
from ...services.payment_gateway import StripeGateway
from .compensation_service import CompensationService
from .finalization_service import FinalizationService
from .repository import BookingRepository
from .reservation_service import ReservationService
from .schemas import (
    BookingResponse,
    CancelRequest,
    CancelResponse,
    FinalizeRequest,
    FinalizeResponse,
    LockRequest,
    LockResponse,
    RescheduleRequest,
    RescheduleResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["Bookings"])

lock_rate_limit = create_rate_limiter(limit=20, window_seconds=60, key_prefix="booking_lock")
finalize_rate_limit = create_rate_limiter(limit=30, window_seconds=60, key_prefix="booking_finalize")
change_rate_limit = create_rate_limiter(limit=10, window_seconds=60, key_prefix="booking_change")


def get_reservation_service(
    db: Session = Depends(get_db), hapio: HapioClient = Depends(get_hapio_client)
) -> ReservationService:
    """Dependency injection for ReservationService"""
    return ReservationService(db, hapio)


def get_finalization_service(
    db: Session = Depends(get_db),
    hapio: HapioClient = Depends(get_hapio_client),
    gateway: StripeGateway = Depends(get_payment_gateway),
    contacts: ContactSyncClient = Depends(get_contact_sync),
) -> FinalizationService:
    return FinalizationService(db, hapio, gateway, contacts)


def get_compensation_service(
    db: Session = Depends(get_db),
    hapio: HapioClient = Depends(get_hapio_client),
    gateway: StripeGateway = Depends(get_payment_gateway),
    contacts: ContactSyncClient = Depends(get_contact_sync),
) -> CompensationService:
    return CompensationService(db, hapio, gateway, contacts)


@router.post("/lock", response_model=LockResponse)
async def lock_slot(
    data: LockRequest,
    service: ReservationService = Depends(get_reservation_service),
    _: None = Depends(lock_rate_limit),
):
    """Place a temporary hold on a slot"""
    return await service.lock_slot(data)


@router.post("/finalize", response_model=FinalizeResponse)
async def finalize_booking(
    data: FinalizeRequest,
    service: FinalizationService = Depends(get_finalization_service),
    _: None = Depends(finalize_rate_limit),
):
    """Confirm a held slot once its payment went through; safe to retry"""
    return await service.finalize(data.paymentIntentId, data.hapioBookingId, data.customer)


@router.get("/{ref}", response_model=BookingResponse)
async def get_booking(ref: str, db: Session = Depends(get_db)):
    """Local view of a booking, by local id or Hapio id"""
    booking = BookingRepository.get_by_ref(db, ref)
    if not booking:
        raise BookingNotFound(f"Booking {ref} not found")
    return booking


@router.post("/{ref}/reschedule", response_model=RescheduleResponse)
async def reschedule_booking(
    ref: str,
    data: RescheduleRequest,
    service: CompensationService = Depends(get_compensation_service),
    _: None = Depends(change_rate_limit),
):
    return await service.reschedule(ref, data)


@router.post("/{ref}/cancel", response_model=CancelResponse)
async def cancel_booking(
    ref: str,
    data: Optional[CancelRequest] = None,
    service: CompensationService = Depends(get_compensation_service),
    _: None = Depends(change_rate_limit),
):
    return await service.cancel(ref, data)
