# petpilot/routers/bookings.py
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from motor.motor_asyncio import AsyncIOMotorDatabase

from ..db import get_db
from ..lifecycle import BookingLifecycle
from ..schemas.booking import (
    BookingCreate,
    BookingDetailEnvelope,
    BookingEnvelope,
    BookingList,
    BookingMessageEnvelope,
    BookingStatus,
    MessageIn,
    StatusPatch,
    TrackingEnvelope,
    TrackingIn,
)
from ..security import TokenPayload, get_current_identity, require_pilot

router = APIRouter()


def get_lifecycle(db: AsyncIOMotorDatabase = Depends(get_db)) -> BookingLifecycle:
    return BookingLifecycle(db)


@router.post("", response_model=BookingEnvelope, status_code=status.HTTP_201_CREATED)
async def create_booking(
    payload: BookingCreate,
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
    identity: TokenPayload = Depends(get_current_identity),
):
    booking = await lifecycle.create(identity, payload)
    return {"message": "Booking created successfully", "booking": booking}


@router.get("", response_model=BookingList)
async def list_bookings(
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    page: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
    identity: TokenPayload = Depends(get_current_identity),
):
    result = await lifecycle.list(identity, status_filter, page, limit)
    return {"message": "Bookings retrieved successfully", **result}


@router.get("/{booking_id}", response_model=BookingDetailEnvelope)
async def get_booking(
    booking_id: str,
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
    identity: TokenPayload = Depends(get_current_identity),
):
    booking = await lifecycle.get(identity, booking_id)
    return {"message": "Booking retrieved successfully", "booking": booking}


@router.patch("/{booking_id}/cancel", response_model=BookingEnvelope)
async def cancel_booking(
    booking_id: str,
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
    identity: TokenPayload = Depends(get_current_identity),
):
    booking = await lifecycle.cancel(identity, booking_id)
    return {"message": "Booking cancelled successfully", "booking": booking}


@router.post("/{booking_id}/messages", response_model=BookingMessageEnvelope, status_code=status.HTTP_201_CREATED)
async def add_message(
    booking_id: str,
    payload: MessageIn,
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
    identity: TokenPayload = Depends(get_current_identity),
):
    msg = await lifecycle.append_message(identity, booking_id, payload.message)
    return {"message": "Message sent successfully", "booking_message": msg}


# ---------- Piloto ----------

@router.patch("/{booking_id}/status", response_model=BookingEnvelope)
async def advance_status(
    booking_id: str,
    body: StatusPatch,
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
    identity: TokenPayload = Depends(require_pilot),
):
    booking = await lifecycle.advance_status(identity, booking_id, body.status)
    return {"message": "Booking status updated", "booking": booking}


@router.post("/{booking_id}/tracking", response_model=TrackingEnvelope, status_code=status.HTTP_201_CREATED)
async def record_tracking(
    booking_id: str,
    ping: TrackingIn,
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
    identity: TokenPayload = Depends(require_pilot),
):
    row = await lifecycle.record_tracking(identity, booking_id, ping)
    return {"message": "Location recorded", "tracking": row}


@router.get("/{booking_id}/tracking/latest", response_model=TrackingEnvelope)
async def latest_tracking(
    booking_id: str,
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
    identity: TokenPayload = Depends(get_current_identity),
):
    row = await lifecycle.current_location(identity, booking_id)
    return {"message": "Current location retrieved", "tracking": row}
