"""
Tests del cliente con refresco de sesión
"""
import asyncio
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest
import httpx
from httpx import ASGITransport

from petpilot.client import FileTokenStore, MemoryTokenStore, PetPilotAPIError, PetPilotClient, RefreshingAuth
from petpilot.main import app
from petpilot.security import create_access_token, verify_access_token
from conftest import booking_payload


class RecordingTransport(ASGITransport):
    """Anota el path de cada petición que llega a la app."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.paths = []

    async def handle_async_request(self, request):
        self.paths.append(request.url.path)
        return await super().handle_async_request(request)


@pytest.fixture
def recorder(db):
    return RecordingTransport(app=app)


def expired_access(user):
    return create_access_token(user["id"], user["email"], user["role"], expires_delta=timedelta(seconds=-1))


async def test_expired_access_token_is_refreshed_and_retried(recorder, owner, make_booking):
    user, tokens = owner
    await make_booking(owner)
    store = MemoryTokenStore(expired_access(user), tokens["refresh_token"])

    async with PetPilotClient("http://test", store=store, transport=recorder) as api:
        page = await api.list_bookings()

    assert page["pagination"]["total"] == 1
    assert recorder.paths == ["/bookings", "/auth/refresh", "/bookings"]
    assert store.refresh_token != tokens["refresh_token"]
    assert verify_access_token(store.access_token).sub == user["id"]


async def test_concurrent_failures_share_one_refresh(recorder, owner, make_booking):
    user, tokens = owner
    booking = await make_booking(owner)
    store = MemoryTokenStore(expired_access(user), tokens["refresh_token"])

    async with PetPilotClient("http://test", store=store, transport=recorder) as api:
        results = await asyncio.gather(
            api.list_bookings(),
            api.get_booking(booking["id"]),
            api.list_bookings(status="PENDING"),
        )

    assert results[0]["pagination"]["total"] == 1
    assert results[1]["id"] == booking["id"]
    assert recorder.paths.count("/auth/refresh") == 1


async def test_failed_refresh_clears_session_and_propagates_original_error(recorder, owner):
    user, _ = owner
    store = MemoryTokenStore(expired_access(user), "not-a-refresh-token", user={"id": user["id"]})

    async with PetPilotClient("http://test", store=store, transport=recorder) as api:
        with pytest.raises(PetPilotAPIError) as exc:
            await api.list_bookings()

    assert exc.value.status_code == 403
    assert exc.value.error == "Invalid or expired token"
    assert store.access_token is None and store.refresh_token is None and store.user is None
    assert recorder.paths == ["/bookings", "/auth/refresh"]


async def test_retry_happens_only_once(recorder, owner, make_booking):
    booking = await make_booking(owner)
    _, tokens = owner
    store = MemoryTokenStore(tokens["access_token"], tokens["refresh_token"])
    url = f"/bookings/{booking['id']}/status"

    async with PetPilotClient("http://test", store=store, transport=recorder) as api:
        # Un dueño recibe 403 por rol: se refresca, se reintenta y se rinde
        with pytest.raises(PetPilotAPIError) as exc:
            await api.request("PATCH", url, json={"status": "ACCEPTED"})

    assert exc.value.status_code == 403
    assert recorder.paths == [url, "/auth/refresh", url]


async def test_missing_token_does_not_trigger_refresh(recorder):
    async with PetPilotClient("http://test", transport=recorder) as api:
        with pytest.raises(PetPilotAPIError) as exc:
            await api.list_bookings()
    assert exc.value.status_code == 401
    assert recorder.paths == ["/bookings"]


async def test_login_and_logout(recorder, owner, make_pet):
    user, _ = owner
    pet_id = await make_pet(user["id"])

    async with PetPilotClient("http://test", transport=recorder) as api:
        body = await api.login("owner@example.com", "password123")
        assert api.store.user["id"] == user["id"]
        assert body["tokens"]["accessToken"] == api.store.access_token

        booking = await api.create_booking(booking_payload(pet_id))
        assert booking["status"] == "PENDING"
        msg = await api.add_message(booking["id"], "Gracias!")
        assert msg["isFromPilot"] is False
        cancelled = await api.cancel_booking(booking["id"])
        assert cancelled["status"] == "CANCELLED"

        refresh_token = api.store.refresh_token
        await api.logout()
        assert api.store.access_token is None

        with pytest.raises(PetPilotAPIError) as exc:
            await api.request("POST", "/auth/refresh", json={"refreshToken": refresh_token})
        assert exc.value.status_code == 401


async def test_register_starts_session(recorder):
    async with PetPilotClient("http://test", transport=recorder) as api:
        await api.register("piloto@example.com", "password123", "Pablo", "Ruiz", role="pilot")
        assert verify_access_token(api.store.access_token).role.value == "pilot"


def test_file_token_store_persists_session(tmp_path):
    path = tmp_path / "session" / "tokens.json"
    store = FileTokenStore(path)
    assert store.access_token is None

    store.save("access-1", "refresh-1", user={"id": "u1"})
    reloaded = FileTokenStore(path)
    assert (reloaded.access_token, reloaded.refresh_token, reloaded.user) == ("access-1", "refresh-1", {"id": "u1"})

    reloaded.clear()
    assert not path.exists()
    assert FileTokenStore(path).refresh_token is None


async def test_without_refresh_token_session_is_kept(recorder, owner):
    user, _ = owner
    stale = expired_access(user)
    store = MemoryTokenStore(stale, None, user={"id": user["id"]})

    async with PetPilotClient("http://test", store=store, transport=recorder) as api:
        with pytest.raises(PetPilotAPIError) as exc:
            await api.list_bookings()

    assert exc.value.status_code == 403
    assert recorder.paths == ["/bookings"]
    assert store.access_token == stale
    assert store.user == {"id": user["id"]}


# ---------- cliente síncrono ----------

def token_guarded_transport():
    """Responde 200 solo al token "fresh"; el resto recibe 403."""
    seen = []

    def handler(request):
        seen.append(request.headers.get("Authorization"))
        if request.headers.get("Authorization") == "Bearer fresh":
            return httpx.Response(200, json={"ok": True})
        return httpx.Response(403, json={"error": "Invalid or expired token", "message": "Invalid or expired token"})

    return httpx.MockTransport(handler), seen


def test_sync_client_refreshes_and_retries():
    transport, seen = token_guarded_transport()
    calls = []

    def refresh(refresh_token):
        calls.append(refresh_token)
        return {"accessToken": "fresh", "refreshToken": "refresh-2"}

    store = MemoryTokenStore("stale", "refresh-1")
    with httpx.Client(transport=transport, base_url="http://test", auth=RefreshingAuth(store, refresh)) as http:
        response = http.get("/bookings")

    assert response.status_code == 200
    assert calls == ["refresh-1"]
    assert seen == ["Bearer stale", "Bearer fresh"]
    assert (store.access_token, store.refresh_token) == ("fresh", "refresh-2")


def test_sync_client_failed_refresh_returns_original_response():
    transport, seen = token_guarded_transport()
    store = MemoryTokenStore("stale", "refresh-1", user={"id": "u1"})

    with httpx.Client(transport=transport, base_url="http://test", auth=RefreshingAuth(store, lambda _: None)) as http:
        response = http.get("/bookings")

    assert response.status_code == 403
    assert seen == ["Bearer stale"]
    assert store.access_token is None and store.user is None


def test_sync_threads_share_one_refresh():
    transport, _ = token_guarded_transport()
    calls = []

    def refresh(refresh_token):
        calls.append(refresh_token)
        time.sleep(0.05)
        return {"accessToken": "fresh", "refreshToken": "refresh-2"}

    store = MemoryTokenStore("stale", "refresh-1")
    auth = RefreshingAuth(store, refresh)
    with httpx.Client(transport=transport, base_url="http://test", auth=auth) as http:
        with ThreadPoolExecutor(max_workers=4) as pool:
            statuses = list(pool.map(lambda _: http.get("/bookings").status_code, range(4)))

    assert statuses == [200, 200, 200, 200]
    assert calls == ["refresh-1"]
