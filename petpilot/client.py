"""
Cliente HTTP de PetPilot con gestión de sesión.

``RefreshingAuth`` añade ``Authorization: Bearer <access>`` a cada petición.
Si la respuesta es 403 (el servidor devuelve 401 solo cuando falta el token),
rota el par de tokens con ``/auth/refresh`` y reintenta la petición original
una única vez. Funciona con ``httpx.AsyncClient`` y con ``httpx.Client``. Los
refrescos van serializados con un lock: si varias peticiones
fallan a la vez, solo la primera llama a ``/auth/refresh`` y el resto se
reintenta con el token nuevo.

Uso:

    async with PetPilotClient("http://localhost:8000") as api:
        await api.login("ana@example.com", "secret123")
        page = await api.list_bookings(status="PENDING")
"""
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Union
import asyncio
import inspect
import json
import logging
import threading

import httpx

logger = logging.getLogger(__name__)

Tokens = Dict[str, str]
RefreshFn = Callable[[str], Union[Optional[Tokens], Awaitable[Optional[Tokens]]]]

_NO_REFRESH_TOKEN = object()


class PetPilotAPIError(Exception):
    def __init__(self, status_code: int, error: str, message: str, details: Optional[list] = None):
        super().__init__(f"{status_code} {error}: {message}")
        self.status_code = status_code
        self.error = error
        self.message = message
        self.details = details

    @classmethod
    def from_response(cls, response: httpx.Response) -> "PetPilotAPIError":
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        return cls(
            response.status_code,
            body.get("error") or response.reason_phrase,
            body.get("message") or response.text,
            body.get("details"),
        )


# ==================== Almacenamiento de tokens ====================

class MemoryTokenStore:
    def __init__(self, access_token: Optional[str] = None, refresh_token: Optional[str] = None, user: Optional[dict] = None):
        self.access_token = access_token
        self.refresh_token = refresh_token
        self.user = user

    def save(self, access_token: str, refresh_token: str, user: Optional[dict] = None) -> None:
        self.access_token = access_token
        self.refresh_token = refresh_token
        if user is not None:
            self.user = user

    def clear(self) -> None:
        self.access_token = None
        self.refresh_token = None
        self.user = None


class FileTokenStore(MemoryTokenStore):
    """Persiste la sesión en un JSON (mismas claves que usa la app móvil)."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        data: Dict[str, Any] = {}
        if self.path.exists():
            try:
                data = json.loads(self.path.read_text(encoding="utf-8"))
            except (OSError, ValueError):
                logger.warning("Sesión ilegible en %s; se empieza sin sesión", self.path)
                data = {}
        super().__init__(data.get("accessToken"), data.get("refreshToken"), data.get("user"))

    def save(self, access_token: str, refresh_token: str, user: Optional[dict] = None) -> None:
        super().save(access_token, refresh_token, user)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(
            json.dumps({"accessToken": self.access_token, "refreshToken": self.refresh_token, "user": self.user}),
            encoding="utf-8",
        )

    def clear(self) -> None:
        super().clear()
        self.path.unlink(missing_ok=True)


# ==================== Auth con refresco ====================

class RefreshingAuth(httpx.Auth):
    """
    ``refresh`` recibe el refresh token y devuelve ``{"accessToken", "refreshToken"}``
    o ``None``. Con ``httpx.AsyncClient`` puede ser una corrutina; con
    ``httpx.Client`` debe ser una función síncrona.
    """

    def __init__(self, store: MemoryTokenStore, refresh: RefreshFn, refresh_statuses: Iterable[int] = (403,)):
        self.store = store
        self._refresh = refresh
        self.refresh_statuses = frozenset(refresh_statuses)
        self._async_lock = asyncio.Lock()
        self._sync_lock = threading.Lock()

    @staticmethod
    def _authorize(request: httpx.Request, token: Optional[str]) -> None:
        if token:
            request.headers["Authorization"] = f"Bearer {token}"
        else:
            request.headers.pop("Authorization", None)

    def sync_auth_flow(self, request: httpx.Request):
        sent_with = self.store.access_token
        self._authorize(request, sent_with)
        response = yield request

        if response.status_code not in self.refresh_statuses:
            return

        with self._sync_lock:
            new_token = self._already_rotated(sent_with) or self._store_rotation(self._call_refresh())
        if new_token is None:
            return
        self._authorize(request, new_token)
        yield request

    async def async_auth_flow(self, request: httpx.Request):
        sent_with = self.store.access_token
        self._authorize(request, sent_with)
        response = yield request

        if response.status_code not in self.refresh_statuses:
            return

        # A partir de aquí la petición es un reintento: no habrá un segundo
        async with self._async_lock:
            new_token = self._already_rotated(sent_with)
            if new_token is None:
                tokens = self._call_refresh()
                if inspect.isawaitable(tokens):
                    tokens = await tokens
                new_token = self._store_rotation(tokens)
        if new_token is None:
            return
        self._authorize(request, new_token)
        yield request

    def _already_rotated(self, failed_token: Optional[str]) -> Optional[str]:
        current = self.store.access_token
        if current and current != failed_token:
            # Otra petición ya refrescó mientras esperábamos
            return current
        return None

    def _call_refresh(self):
        refresh_token = self.store.refresh_token
        if not refresh_token:
            return _NO_REFRESH_TOKEN
        return self._refresh(refresh_token)

    def _store_rotation(self, tokens) -> Optional[str]:
        if tokens is _NO_REFRESH_TOKEN:
            # Sin refresh token no hay nada que intentar; la sesión queda como estaba
            return None
        if not tokens:
            logger.info("No se pudo refrescar la sesión; se borran los tokens")
            self.store.clear()
            return None

        self.store.save(tokens["accessToken"], tokens["refreshToken"])
        logger.debug("Par de tokens rotado")
        return tokens["accessToken"]


# ==================== Cliente ====================

class PetPilotClient:
    def __init__(
        self,
        base_url: str,
        store: Optional[MemoryTokenStore] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        refresh_statuses: Iterable[int] = (403,),
        timeout: float = 10.0,
    ):
        self.store = store if store is not None else MemoryTokenStore()
        # El refresh va por un cliente sin auth para no reentrar en el flujo
        self._raw = httpx.AsyncClient(base_url=base_url, transport=transport, timeout=timeout)
        self.auth = RefreshingAuth(self.store, self._refresh_tokens, refresh_statuses)
        self._http = httpx.AsyncClient(base_url=base_url, transport=transport, timeout=timeout, auth=self.auth)

    async def __aenter__(self) -> "PetPilotClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()
        await self._raw.aclose()

    async def _refresh_tokens(self, refresh_token: str) -> Optional[Tokens]:
        try:
            response = await self._raw.post("/auth/refresh", json={"refreshToken": refresh_token})
        except httpx.HTTPError as e:
            logger.warning("Fallo de red al refrescar tokens: %s", e)
            return None
        if not response.is_success:
            logger.info("Refresh rechazado (%s)", response.status_code)
            return None
        return response.json().get("tokens")

    async def request(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
        response = await self._http.request(method, url, **kwargs)
        if response.is_error:
            raise PetPilotAPIError.from_response(response)
        return response.json()

    # ---------- auth ----------

    def _start_session(self, body: Dict[str, Any]) -> Dict[str, Any]:
        tokens = body["tokens"]
        self.store.save(tokens["accessToken"], tokens["refreshToken"], body.get("user"))
        return body

    async def register(self, email: str, password: str, first_name: str, last_name: str, **extra) -> Dict[str, Any]:
        payload = {"email": email, "password": password, "firstName": first_name, "lastName": last_name, **extra}
        return self._start_session(await self.request("POST", "/auth/register", json=payload))

    async def login(self, email: str, password: str) -> Dict[str, Any]:
        return self._start_session(await self.request("POST", "/auth/login", json={"email": email, "password": password}))

    async def logout(self) -> None:
        try:
            if self.store.access_token:
                await self.request("POST", "/auth/logout")
        finally:
            self.store.clear()

    # ---------- bookings ----------

    async def create_booking(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return (await self.request("POST", "/bookings", json=data))["booking"]

    async def list_bookings(self, status: Optional[str] = None, page: Optional[int] = None, limit: Optional[int] = None) -> Dict[str, Any]:
        params = {k: v for k, v in {"status": status, "page": page, "limit": limit}.items() if v is not None}
        return await self.request("GET", "/bookings", params=params)

    async def get_booking(self, booking_id: str) -> Dict[str, Any]:
        return (await self.request("GET", f"/bookings/{booking_id}"))["booking"]

    async def cancel_booking(self, booking_id: str) -> Dict[str, Any]:
        return (await self.request("PATCH", f"/bookings/{booking_id}/cancel"))["booking"]

    async def add_message(self, booking_id: str, message: str) -> Dict[str, Any]:
        return (await self.request("POST", f"/bookings/{booking_id}/messages", json={"message": message}))["bookingMessage"]
