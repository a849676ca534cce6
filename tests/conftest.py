"""
Configuración de pytest para tests
"""
import os

# Antes de importar la app: sin rate limiting, sin transacciones y secretos de test
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["MONGODB_TRANSACTIONS"] = "false"
os.environ["JWT_SECRET"] = "test-access-secret"
os.environ["JWT_REFRESH_SECRET"] = "test-refresh-secret"
os.environ["APP_ENV"] = "test"

from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient, ASGITransport
from mongomock_motor import AsyncMongoMockClient

from petpilot.db import ensure_indexes, get_db
from petpilot.main import app
from petpilot.security import hash_password, issue_tokens
from petpilot.utils import utcnow


@pytest.fixture
async def db():
    """Base de datos en memoria por test"""
    database = AsyncMongoMockClient()["petpilot_test"]
    await ensure_indexes(database)

    async def _override():
        return database

    app.dependency_overrides[get_db] = _override
    yield database
    app.dependency_overrides.pop(get_db, None)


@pytest.fixture
def transport():
    return ASGITransport(app=app)


@pytest.fixture
async def client(db, transport):
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


def auth_header(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_user(db):
    """Crea un usuario directamente en la BD y devuelve (user, tokens)."""
    async def _make(email: str, role: str = "owner", is_active: bool = True, password: str = "password123"):
        now = utcnow()
        doc = {
            "email": email,
            "password_hash": hash_password(password),
            "first_name": email.split("@")[0].title(),
            "last_name": "Test",
            "phone": None,
            "role": role,
            "is_active": is_active,
            "token_version": 0,
            "created_at": now,
            "updated_at": now,
        }
        res = await db.users.insert_one(doc)
        user = {**doc, "id": str(res.inserted_id)}
        return user, issue_tokens(user)
    return _make


@pytest.fixture
async def owner(make_user):
    return await make_user("owner@example.com")


@pytest.fixture
async def other_owner(make_user):
    return await make_user("other@example.com")


@pytest.fixture
async def pilot(make_user):
    return await make_user("pilot@example.com", role="pilot")


@pytest.fixture
async def second_pilot(make_user):
    return await make_user("pilot2@example.com", role="pilot")


@pytest.fixture
async def admin(make_user):
    return await make_user("admin@example.com", role="admin")


@pytest.fixture
def make_pet(db):
    async def _make(owner_id: str, name: str = "Luna", is_active: bool = True) -> str:
        res = await db.pets.insert_one({
            "owner_id": owner_id,
            "name": name,
            "species": "dog",
            "breed": "Labrador",
            "size": "LARGE",
            "weight": 28.5,
            "is_active": is_active,
            "created_at": utcnow(),
        })
        return str(res.inserted_id)
    return _make


def booking_payload(pet_id: str, **overrides) -> dict:
    scheduled = datetime.now(timezone.utc) + timedelta(days=1)
    data = {
        "petId": pet_id,
        "pickupLocation": "Calle Mayor 1, Madrid",
        "dropoffLocation": "Clínica Veterinaria Retiro",
        "pickupLat": 40.4168,
        "pickupLng": -3.7038,
        "dropoffLat": 40.4153,
        "dropoffLng": -3.6845,
        "scheduledTime": scheduled.isoformat(),
        "estimatedPrice": 25.0,
        "notes": "Se marea en el coche",
    }
    data.update(overrides)
    return data


@pytest.fixture
def make_booking(client, make_pet):
    """Crea una reserva vía API para el usuario dado y devuelve el JSON de la reserva."""
    async def _make(user_and_tokens, pet_id: str | None = None, **overrides) -> dict:
        user, tokens = user_and_tokens
        pet_id = pet_id or await make_pet(user["id"])
        r = await client.post(
            "/bookings",
            json=booking_payload(pet_id, **overrides),
            headers=auth_header(tokens["access_token"]),
        )
        assert r.status_code == 201, r.text
        return r.json()["booking"]
    return _make
