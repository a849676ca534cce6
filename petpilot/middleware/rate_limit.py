"""
Rate limiting con slowapi para los endpoints sensibles (registro, login, refresh).
"""
from fastapi import Request, HTTPException
from limits import parse
from slowapi import Limiter
from slowapi.util import get_remote_address

from ..config import get_settings

REGISTER_LIMIT = "5/minute"
LOGIN_LIMIT = "10/minute"
REFRESH_LIMIT = "30/minute"

limiter = Limiter(key_func=get_remote_address, enabled=get_settings().rate_limit_enabled)


def apply_rate_limit(request: Request, limit: str):
    """
    Aplica rate limiting a un endpoint específico.
    Uso: apply_rate_limit(request, LOGIN_LIMIT)

    Si el limiter no está configurado o está desactivado (RATE_LIMIT_ENABLED=false),
    la función no hace nada.
    """
    app_limiter = getattr(request.app.state, "limiter", None)
    if app_limiter is None or not app_limiter.enabled:
        return

    key = get_remote_address(request)
    # Contador por IP y por ruta
    if not app_limiter.limiter.hit(parse(limit), key, request.url.path):
        raise HTTPException(
            status_code=429,
            detail=f"Too many requests. Limit: {limit}. Try again later.",
        )
