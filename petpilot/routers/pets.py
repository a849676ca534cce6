from fastapi import APIRouter, Depends, status
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from ..db import get_db
from ..errors import NotFound
from ..schemas.pet import PetCreate, PetEnvelope, PetList
from ..security import TokenPayload, get_current_identity
from ..utils import parse_object_id, to_id, utcnow

router = APIRouter()


@router.get("", response_model=PetList)
async def my_pets(
    identity: TokenPayload = Depends(get_current_identity),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    docs = await db.pets.find({"owner_id": identity.sub, "is_active": True}).sort("created_at", -1).to_list(200)
    return {"message": "Pets retrieved successfully", "pets": [to_id(d) for d in docs]}


@router.post("", response_model=PetEnvelope, status_code=status.HTTP_201_CREATED)
async def create_pet(
    payload: PetCreate,
    identity: TokenPayload = Depends(get_current_identity),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    doc = payload.model_dump()
    doc["owner_id"] = identity.sub     # lo pone el backend
    doc["is_active"] = True
    doc["created_at"] = utcnow()
    res = await db.pets.insert_one(doc)
    doc["_id"] = res.inserted_id
    return {"message": "Pet created successfully", "pet": to_id(doc)}


@router.delete("/{pet_id}", response_model=PetEnvelope)
async def delete_pet(
    pet_id: str,
    identity: TokenPayload = Depends(get_current_identity),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    """Borrado lógico: las reservas existentes siguen apuntando a la mascota."""
    oid = parse_object_id(pet_id)
    pet = None
    if oid:
        pet = await db.pets.find_one_and_update(
            {"_id": oid, "owner_id": identity.sub, "is_active": True},
            {"$set": {"is_active": False}},
            return_document=ReturnDocument.AFTER,
        )
    if not pet:
        raise NotFound("Pet not found or you do not have permission to delete it", error="Pet not found")
    return {"message": "Pet deleted successfully", "pet": to_id(pet)}
