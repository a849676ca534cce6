from datetime import datetime
from typing import Literal, Optional
from pydantic import Field

from .common import CamelModel

Size = Literal["SMALL", "MEDIUM", "LARGE", "EXTRA_LARGE"]


class PetCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=80)
    species: str = Field(..., min_length=1, max_length=40)
    breed: Optional[str] = Field(None, max_length=80)
    size: Size = "MEDIUM"
    weight: Optional[float] = Field(None, gt=0, le=200)
    notes: Optional[str] = Field(None, max_length=1000)


class PetOut(PetCreate):
    id: str
    owner_id: str
    is_active: bool = True
    created_at: Optional[datetime] = None


class PetEnvelope(CamelModel):
    message: str
    pet: PetOut


class PetList(CamelModel):
    message: str
    pets: list[PetOut]
