from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorClientSession, AsyncIOMotorDatabase
from .config import get_settings

_settings = get_settings()
_client: AsyncIOMotorClient | None = None
_db: AsyncIOMotorDatabase | None = None


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    await db.users.create_index("email", unique=True)
    await db.pets.create_index([("owner_id", 1)])
    await db.bookings.create_index([("pet_owner_id", 1), ("created_at", -1)])
    await db.bookings.create_index([("pilot_id", 1)])
    await db.booking_services.create_index([("booking_id", 1)])
    await db.booking_messages.create_index([("booking_id", 1), ("timestamp", 1)])
    # La posición actual es siempre el ping más reciente
    await db.booking_tracking.create_index([("booking_id", 1), ("timestamp", -1)])


async def get_db() -> AsyncIOMotorDatabase:
    global _client, _db
    if _db is None:
        _client = AsyncIOMotorClient(_settings.mongodb_uri)
        _db = _client[_settings.db_name]
        await ensure_indexes(_db)
    return _db


@asynccontextmanager
async def transaction(db: AsyncIOMotorDatabase) -> AsyncIterator[Optional[AsyncIOMotorClientSession]]:
    """
    Agrupa escrituras de varios documentos.

    Con MONGODB_TRANSACTIONS activo abre una sesión con transacción (commit al
    salir, abort si hay excepción). Sin él devuelve None y las escrituras se
    ejecutan en orden; todas las llamadas aceptan ``session=None``.
    """
    if not _settings.mongodb_transactions:
        yield None
        return
    async with await db.client.start_session() as session:
        async with session.start_transaction():
            yield session
