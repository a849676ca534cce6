from enum import Enum
from datetime import datetime
from typing import Optional, List
from pydantic import Field, field_validator

from .common import CamelModel, Pagination


class BookingStatus(str, Enum):
    pending                 = "PENDING"
    accepted                = "ACCEPTED"
    en_route_to_pickup      = "EN_ROUTE_TO_PICKUP"
    pet_picked_up           = "PET_PICKED_UP"
    en_route_to_destination = "EN_ROUTE_TO_DESTINATION"
    completed               = "COMPLETED"
    cancelled               = "CANCELLED"


class BookingServiceIn(CamelModel):
    service_id: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)


class BookingCreate(CamelModel):
    pet_id: str = Field(..., min_length=1, description="Pet ID is required")
    pickup_location: str = Field(..., min_length=1, description="Pickup location is required")
    dropoff_location: str = Field(..., min_length=1, description="Dropoff location is required")
    pickup_lat: Optional[float] = Field(None, ge=-90, le=90)
    pickup_lng: Optional[float] = Field(None, ge=-180, le=180)
    dropoff_lat: Optional[float] = Field(None, ge=-90, le=90)
    dropoff_lng: Optional[float] = Field(None, ge=-180, le=180)
    scheduled_time: datetime
    estimated_price: float = Field(..., ge=0)
    distance: Optional[float] = Field(None, ge=0)
    duration: Optional[int] = Field(None, ge=0)
    notes: Optional[str] = Field(None, max_length=1000)
    services: List[BookingServiceIn] = []

    @field_validator("pickup_location", "dropoff_location", mode="before")
    @classmethod
    def strip_location(cls, v):
        return v.strip() if isinstance(v, str) else v


class BookingServiceOut(CamelModel):
    id: str
    service_id: str
    price: float


class PetSummary(CamelModel):
    id: str
    name: str
    species: Optional[str] = None
    breed: Optional[str] = None
    size: Optional[str] = None
    weight: Optional[float] = None


class BookingMessageOut(CamelModel):
    id: str
    booking_id: str
    message: str
    is_from_pilot: bool
    sender_id: Optional[str] = None
    timestamp: datetime


class TrackingIn(CamelModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    speed: Optional[float] = Field(None, ge=0)
    heading: Optional[float] = Field(None, ge=0, lt=360)


class TrackingOut(TrackingIn):
    id: str
    booking_id: str
    timestamp: datetime


class BookingOut(CamelModel):
    id: str
    pet_owner_id: str
    pilot_id: Optional[str] = None
    pet_id: str
    pickup_location: str
    dropoff_location: str
    pickup_lat: Optional[float] = None
    pickup_lng: Optional[float] = None
    dropoff_lat: Optional[float] = None
    dropoff_lng: Optional[float] = None
    scheduled_time: datetime
    estimated_price: float
    final_price: Optional[float] = None
    distance: Optional[float] = None
    duration: Optional[int] = None
    notes: Optional[str] = None
    status: BookingStatus
    created_at: datetime
    updated_at: datetime
    accepted_at: Optional[datetime] = None
    picked_up_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    pet: Optional[PetSummary] = None
    services: List[BookingServiceOut] = []


class BookingDetailOut(BookingOut):
    current_location: Optional[TrackingOut] = None
    messages: List[BookingMessageOut] = []


class BookingEnvelope(CamelModel):
    message: str
    booking: BookingOut


class BookingDetailEnvelope(CamelModel):
    message: str
    booking: BookingDetailOut


class BookingList(CamelModel):
    message: str
    bookings: List[BookingOut]
    pagination: Pagination


class StatusPatch(CamelModel):
    status: BookingStatus


class MessageIn(CamelModel):
    # El vacío se comprueba tras el strip en el ciclo de vida
    message: Optional[str] = None


class ThreadMessageIn(CamelModel):
    message: str = Field(..., min_length=1, max_length=1000)

    @field_validator("message", mode="before")
    @classmethod
    def strip_message(cls, v):
        return v.strip() if isinstance(v, str) else v


class BookingMessageEnvelope(CamelModel):
    message: str
    booking_message: BookingMessageOut


class BookingMessageList(CamelModel):
    message: str
    messages: List[BookingMessageOut]
    pagination: Pagination


class TrackingEnvelope(CamelModel):
    message: str
    tracking: Optional[TrackingOut] = None
