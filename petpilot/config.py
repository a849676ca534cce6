from pydantic import BaseModel
import os
from dotenv import load_dotenv
load_dotenv()  # carga el archivo .env de la raíz


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


class Settings(BaseModel):
    app_name: str = os.getenv("APP_NAME", "PetPilot")
    env: str = os.getenv("APP_ENV", "dev")
    mongodb_uri: str = os.getenv("MONGODB_URI", "mongodb://localhost:27017")
    db_name: str = os.getenv("DB_NAME", "petpilot")
    # Las transacciones requieren replica set; en un mongod standalone fallan
    mongodb_transactions: bool = _flag("MONGODB_TRANSACTIONS", "false")
    jwt_secret: str = os.getenv("JWT_SECRET", "change-me")
    jwt_refresh_secret: str = os.getenv("JWT_REFRESH_SECRET", "change-me-too")
    access_token_expires_minutes: int = int(os.getenv("ACCESS_TOKEN_EXPIRES_MINUTES", "15"))
    refresh_token_expires_days: int = int(os.getenv("REFRESH_TOKEN_EXPIRES_DAYS", "7"))
    rate_limit_enabled: bool = _flag("RATE_LIMIT_ENABLED", "true")
    frontend_base_url: str = os.getenv("FRONTEND_BASE_URL", "http://localhost:8081")
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()


_settings: Settings | None = None
def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
