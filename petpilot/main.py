from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging

from .config import get_settings
from .errors import register_error_handlers
from .middleware.rate_limit import limiter
from .routers import auth, bookings, messages, pets, users

settings = get_settings()

# Configurar logging
logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app_name)
app.state.limiter = limiter
register_error_handlers(app)

# Configuración de CORS según entorno
if settings.env == "dev":
    # Desarrollo: Expo y navegador local
    cors_origins = [
        "http://localhost:8081",
        "http://127.0.0.1:8081",
    ]
    cors_regex = r"(https?|exp)://(localhost|127\.0\.0\.1|192\.168\.\d+\.\d+)(:\d+)?"
    cors_headers = ["Authorization", "Content-Type", "Accept", "Origin", "X-Requested-With"]
else:
    # Producción: solo el frontend configurado
    frontend_url = settings.frontend_base_url
    cors_origins = [frontend_url] if frontend_url else []
    cors_regex = None
    cors_headers = ["Authorization", "Content-Type", "Accept"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_origin_regex=cors_regex,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=cors_headers,
    expose_headers=["Content-Type"],
)


@app.get("/health")
async def health():
    return {"status": "ok", "message": f"{settings.app_name} API is running", "env": settings.env}

# Routers
app.include_router(auth.router, prefix="/auth", tags=["auth"])
app.include_router(users.router, prefix="/users", tags=["users"])
app.include_router(pets.router, prefix="/pets", tags=["pets"])
app.include_router(bookings.router, prefix="/bookings", tags=["bookings"])
app.include_router(messages.router, prefix="/messages", tags=["messages"])

logger.info("%s iniciado (env=%s)", settings.app_name, settings.env)
