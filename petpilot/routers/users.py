# petpilot/routers/users.py
from fastapi import APIRouter, Depends
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
import logging

from ..db import get_db
from ..errors import NotFound
from ..schemas.user import UserEnvelope
from ..security import TokenPayload, get_current_user, require_admin
from ..utils import parse_object_id, to_id, utcnow

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/profile", response_model=UserEnvelope)
async def profile(current=Depends(get_current_user)):
    return {"message": "Profile retrieved successfully", "user": current}


@router.patch("/{user_id}/deactivate", response_model=UserEnvelope)
async def deactivate_user(
    user_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: TokenPayload = Depends(require_admin),
):
    """
    Desactiva una cuenta (nunca se borra). Incrementa token_version para que
    sus refresh tokens dejen de servir.
    """
    oid = parse_object_id(user_id)
    doc = None
    if oid:
        doc = await db.users.find_one_and_update(
            {"_id": oid},
            {"$set": {"is_active": False, "updated_at": utcnow()}, "$inc": {"token_version": 1}},
            return_document=ReturnDocument.AFTER,
        )
    if not doc:
        raise NotFound("User not found", error="User not found")
    logger.warning("Usuario %s desactivado por el admin %s", user_id, admin.sub)
    return {"message": "User deactivated", "user": to_id(doc)}
