from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from uuid import uuid4
import logging

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from jose import jwt, JWTError
from passlib.context import CryptContext
from pydantic import BaseModel
from motor.motor_asyncio import AsyncIOMotorDatabase

from .config import get_settings
from .db import get_db
from .errors import Forbidden, TokenInvalid, TokenMalformed, Unauthenticated
from .schemas.user import Role
from .utils import parse_object_id, to_id

logger = logging.getLogger(__name__)

settings = get_settings()
ALGO = "HS256"
ACCESS = "access"
REFRESH = "refresh"
pwd = CryptContext(schemes=["bcrypt"], deprecated="auto")
# auto_error=False: la ausencia de token la resolvemos nosotros (401 vs 403)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


class TokenPayload(BaseModel):
    sub: str
    email: str
    role: Role
    type: str
    iat: int
    exp: int
    jti: str
    ver: Optional[int] = None


def hash_password(plain: str) -> str:
    return pwd.hash(plain)


def verify_password(plain: str, hashed: str) -> bool:
    if not hashed:
        return False
    return pwd.verify(plain, hashed)


# ==================== Token service ====================

def _encode(claims: Dict[str, Any], token_type: str, secret: str, expires_delta: timedelta) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        **claims,
        "type": token_type,
        "iat": now,
        "exp": now + expires_delta,
        "jti": uuid4().hex,
    }
    return jwt.encode(payload, secret, algorithm=ALGO)


def create_access_token(
    user_id: str,
    email: str,
    role: str,
    expires_delta: Optional[timedelta] = None,
) -> str:
    delta = expires_delta if expires_delta is not None else timedelta(minutes=settings.access_token_expires_minutes)
    return _encode({"sub": user_id, "email": email, "role": role}, ACCESS, settings.jwt_secret, delta)


def create_refresh_token(
    user_id: str,
    email: str,
    role: str,
    token_version: int = 0,
    expires_delta: Optional[timedelta] = None,
) -> str:
    delta = expires_delta if expires_delta is not None else timedelta(days=settings.refresh_token_expires_days)
    claims = {"sub": user_id, "email": email, "role": role, "ver": token_version}
    return _encode(claims, REFRESH, settings.jwt_refresh_secret, delta)


def issue_tokens(user: Dict[str, Any]) -> Dict[str, str]:
    """Par access/refresh para un documento de usuario (con ``id`` ya en str)."""
    user_id = str(user.get("id") or user.get("_id"))
    role = user.get("role", Role.owner.value)
    if isinstance(role, Role):
        role = role.value
    return {
        "access_token": create_access_token(user_id, user["email"], role),
        "refresh_token": create_refresh_token(user_id, user["email"], role, int(user.get("token_version", 0))),
    }


def _verify(token: str, secret: str, token_type: str) -> TokenPayload:
    try:
        jwt.get_unverified_claims(token)
    except JWTError as e:
        raise TokenMalformed(str(e)) from e
    try:
        claims = jwt.decode(token, secret, algorithms=[ALGO])
    except JWTError as e:
        raise TokenInvalid(str(e)) from e
    if claims.get("type") != token_type or not claims.get("sub"):
        raise TokenInvalid(f"Not a valid {token_type} token")
    try:
        return TokenPayload(**claims)
    except ValueError as e:
        raise TokenInvalid("Unexpected token claims") from e


def verify_access_token(token: str) -> TokenPayload:
    return _verify(token, settings.jwt_secret, ACCESS)


def verify_refresh_token(token: str) -> TokenPayload:
    return _verify(token, settings.jwt_refresh_secret, REFRESH)


# ==================== Auth gate ====================

async def get_current_identity(request: Request, token: Optional[str] = Depends(oauth2_scheme)) -> TokenPayload:
    if not token:
        raise Unauthenticated("Access token required", error="Access token required")
    try:
        identity = verify_access_token(token)
    except (TokenInvalid, TokenMalformed) as e:
        logger.info("Token de acceso rechazado en %s: %s", request.url.path, e)
        raise Forbidden("Invalid or expired token", error="Invalid or expired token")
    request.state.identity = identity
    return identity


def _attached_identity(request: Request) -> TokenPayload:
    identity = getattr(request.state, "identity", None)
    if identity is None:
        raise Unauthenticated("Authentication required")
    return identity


async def require_pilot(request: Request, _: TokenPayload = Depends(get_current_identity)) -> TokenPayload:
    identity = _attached_identity(request)
    if identity.role not in (Role.pilot, Role.admin):
        raise Forbidden("Pilot access required", error="Pilot access required")
    return identity


async def require_admin(request: Request, _: TokenPayload = Depends(get_current_identity)) -> TokenPayload:
    identity = _attached_identity(request)
    if identity.role != Role.admin:
        raise Forbidden("Admin access required", error="Admin access required")
    return identity


async def get_current_user(
    db: AsyncIOMotorDatabase = Depends(get_db),
    identity: TokenPayload = Depends(get_current_identity),
):
    oid = parse_object_id(identity.sub)
    doc = await db.users.find_one({"_id": oid}) if oid else None
    if not doc or not doc.get("is_active", True):
        raise Unauthenticated("User not found or account disabled")
    return to_id(doc)
