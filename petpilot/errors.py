"""
Taxonomía de errores de la API y sus manejadores.

Todo error sale como JSON ``{"error": ..., "message": ...}``; los de validación
añaden ``details`` con un elemento por campo.
"""
from typing import Any, Optional
import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class ApiError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error: str = "Internal server error"

    def __init__(self, message: str, error: Optional[str] = None, details: Optional[list[dict]] = None):
        super().__init__(message)
        self.message = message
        if error:
            self.error = error
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.error, "message": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class ValidationFailed(ApiError):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "Validation failed"


class Unauthenticated(ApiError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error = "Authentication required"


class Forbidden(ApiError):
    status_code = status.HTTP_403_FORBIDDEN
    error = "Forbidden"


class NotFound(ApiError):
    status_code = status.HTTP_404_NOT_FOUND
    error = "Not found"


class IllegalTransition(ApiError):
    # 400 y no 409: es lo que espera el cliente móvil
    status_code = status.HTTP_400_BAD_REQUEST
    error = "Illegal transition"


class Conflict(ApiError):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "Duplicate entry"


class Internal(ApiError):
    pass


# ---------- Errores del servicio de tokens (no HTTP) ----------

class TokenError(Exception):
    pass


class TokenInvalid(TokenError):
    """Firma incorrecta, token caducado o claims inesperados."""


class TokenMalformed(TokenError):
    """El token no se puede ni parsear como JWT."""


# ---------- Manejadores ----------

def _validation_details(exc: RequestValidationError) -> list[dict]:
    details = []
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        details.append({"field": ".".join(loc) or None, "message": err.get("msg", "Invalid value")})
    return details


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    err = ValidationFailed("Request body or parameters are invalid", details=_validation_details(exc))
    return JSONResponse(status_code=err.status_code, content=err.to_dict())


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    detail = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": detail, "message": detail},
        headers=getattr(exc, "headers", None),
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Error no controlado en %s %s", request.method, request.url.path)
    err = Internal("An unexpected error occurred")
    return JSONResponse(status_code=err.status_code, content=err.to_dict())


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
