from fastapi import APIRouter, Depends, Request, status
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError
import logging

from ..db import get_db
from ..errors import Conflict, TokenError, Unauthenticated
from ..middleware.rate_limit import apply_rate_limit, LOGIN_LIMIT, REFRESH_LIMIT, REGISTER_LIMIT
from ..schemas.auth import AuthOut, Login, RefreshIn, RefreshOut, Register
from ..schemas.common import MessageOut
from ..security import (
    TokenPayload,
    get_current_identity,
    hash_password,
    issue_tokens,
    verify_password,
    verify_refresh_token,
)
from ..utils import parse_object_id, to_id, utcnow

logger = logging.getLogger(__name__)

router = APIRouter()


def _invalid_refresh(message: str = "Please login again") -> Unauthenticated:
    return Unauthenticated(message, error="Invalid refresh token")


@router.post("/register", response_model=AuthOut, status_code=status.HTTP_201_CREATED)
async def register(request: Request, payload: Register, db: AsyncIOMotorDatabase = Depends(get_db)):
    apply_rate_limit(request, REGISTER_LIMIT)
    exists = await db.users.find_one({"email": payload.email})
    if exists:
        raise Conflict("An account with this email already exists", error="User already exists")

    now = utcnow()
    doc = payload.model_dump()
    doc["password_hash"] = hash_password(doc.pop("password"))
    doc.update({
        "is_active": True,
        "token_version": 0,
        "created_at": now,
        "updated_at": now,
    })
    try:
        res = await db.users.insert_one(doc)
    except DuplicateKeyError:
        # Dos registros simultáneos con el mismo email
        raise Conflict("An account with this email already exists", error="User already exists")

    user = to_id(await db.users.find_one({"_id": res.inserted_id}))
    logger.info("Usuario registrado: %s (%s)", user["id"], user["role"])
    return {"message": "User registered successfully", "user": user, "tokens": issue_tokens(user)}


@router.post("/login", response_model=AuthOut)
async def login(request: Request, payload: Login, db: AsyncIOMotorDatabase = Depends(get_db)):
    apply_rate_limit(request, LOGIN_LIMIT)
    user = await db.users.find_one({"email": payload.email})
    if not user or not verify_password(payload.password, user.get("password_hash", "")):
        raise Unauthenticated("Email or password is incorrect", error="Invalid credentials")
    if not user.get("is_active", True):
        raise Unauthenticated(
            "Your account has been disabled. Please contact support.",
            error="Account disabled",
        )
    user = to_id(user)
    return {"message": "Login successful", "user": user, "tokens": issue_tokens(user)}


@router.post("/refresh", response_model=RefreshOut)
async def refresh(request: Request, payload: RefreshIn, db: AsyncIOMotorDatabase = Depends(get_db)):
    apply_rate_limit(request, REFRESH_LIMIT)
    if not payload.refresh_token:
        raise Unauthenticated("Please provide a refresh token", error="Refresh token required")
    try:
        claims = verify_refresh_token(payload.refresh_token)
    except TokenError as e:
        logger.info("Refresh rechazado: %s", e)
        raise _invalid_refresh()

    oid = parse_object_id(claims.sub)
    user = await db.users.find_one({"_id": oid}) if oid else None
    if not user or not user.get("is_active", True):
        raise _invalid_refresh("User not found or account disabled")
    # Un logout o una desactivación incrementan token_version
    if int(user.get("token_version", 0)) != (claims.ver or 0):
        raise _invalid_refresh("Refresh token has been revoked")

    return {"message": "Tokens refreshed successfully", "tokens": issue_tokens(to_id(user))}


@router.post("/logout", response_model=MessageOut)
async def logout(
    db: AsyncIOMotorDatabase = Depends(get_db),
    identity: TokenPayload = Depends(get_current_identity),
):
    """
    Revoca todos los refresh tokens emitidos hasta ahora para el usuario.
    Los access tokens siguen siendo válidos hasta que caduquen (minutos);
    el cliente debe borrarlos de su almacenamiento.
    """
    oid = parse_object_id(identity.sub)
    if oid:
        await db.users.update_one({"_id": oid}, {"$inc": {"token_version": 1}, "$set": {"updated_at": utcnow()}})
    return {"message": "Logged out successfully"}
