from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from ..lifecycle import BookingLifecycle
from ..schemas.booking import BookingMessageEnvelope, BookingMessageList, ThreadMessageIn
from ..security import TokenPayload, get_current_identity
from .bookings import get_lifecycle

router = APIRouter()


@router.get("/booking/{booking_id}", response_model=BookingMessageList)
async def list_messages(
    booking_id: str,
    page: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
    identity: TokenPayload = Depends(get_current_identity),
):
    """Conversación de una reserva, de más antiguo a más reciente (dueño o piloto asignado)."""
    result = await lifecycle.thread(identity, booking_id, page, limit)
    return {"message": "Messages retrieved successfully", **result}


@router.post("/booking/{booking_id}", response_model=BookingMessageEnvelope, status_code=status.HTTP_201_CREATED)
async def send_message(
    booking_id: str,
    payload: ThreadMessageIn,
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
    identity: TokenPayload = Depends(get_current_identity),
):
    msg = await lifecycle.post_to_thread(identity, booking_id, payload.message)
    return {"message": "Message sent successfully", "booking_message": msg}
