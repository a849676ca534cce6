"""
Ciclo de vida de una reserva.

    PENDING -> ACCEPTED -> EN_ROUTE_TO_PICKUP -> PET_PICKED_UP
            -> EN_ROUTE_TO_DESTINATION -> COMPLETED

CANCELLED solo es alcanzable desde PENDING o ACCEPTED. COMPLETED y CANCELLED
son terminales.

Cada cambio de estado es una única actualización condicional sobre el estado
actual, así que dos peticiones concurrentes no pueden pisarse; la que llega
tarde falla con IllegalTransition.
"""
from typing import Any, Dict, List, Optional
import logging

from motor.motor_asyncio import AsyncIOMotorDatabase

from .db import transaction
from .errors import IllegalTransition, NotFound, ValidationFailed
from .repository import BookingRepository
from .schemas.booking import BookingCreate, BookingStatus, TrackingIn
from .schemas.user import Role
from .security import TokenPayload
from .utils import as_naive_utc, page_count, paginate, to_id, utcnow

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100
MAX_THREAD_PAGE_SIZE = 200

S = BookingStatus

ALLOWED: dict[BookingStatus, set[BookingStatus]] = {
    S.pending: {S.accepted, S.cancelled},
    S.accepted: {S.en_route_to_pickup, S.cancelled},
    S.en_route_to_pickup: {S.pet_picked_up},
    S.pet_picked_up: {S.en_route_to_destination},
    S.en_route_to_destination: {S.completed},
    S.completed: set(),
    S.cancelled: set(),
}

TERMINAL = frozenset(s for s, targets in ALLOWED.items() if not targets)
CANCELLABLE = frozenset(s for s, targets in ALLOWED.items() if S.cancelled in targets)
# Estados en los que el piloto está en movimiento y puede enviar su posición
TRACKABLE = frozenset({S.accepted, S.en_route_to_pickup, S.pet_picked_up, S.en_route_to_destination})

# Marca temporal que se fija al entrar en cada estado
STAMPS = {
    S.accepted: "accepted_at",
    S.pet_picked_up: "picked_up_at",
    S.completed: "completed_at",
    S.cancelled: "cancelled_at",
}

STATUS_MESSAGES = {
    S.accepted: "Your booking has been accepted by a pilot",
    S.en_route_to_pickup: "Your pilot is on the way to pick up your pet",
    S.pet_picked_up: "Your pet has been picked up",
    S.en_route_to_destination: "Your pet is on the way to the destination",
    S.completed: "Your pet has arrived. Booking completed",
}


def allowed_targets(status: BookingStatus) -> set[BookingStatus]:
    return set(ALLOWED.get(status, set()))


def can_transition(old: BookingStatus, new: BookingStatus) -> bool:
    return new in ALLOWED.get(old, set())


def check_transition(old: BookingStatus, new: BookingStatus) -> None:
    if not can_transition(old, new):
        raise IllegalTransition(f"Booking cannot move from {old.value} to {new.value}")


def sources_of(new: BookingStatus) -> set[BookingStatus]:
    """Estados desde los que ``new`` es alcanzable en un paso."""
    return {old for old, targets in ALLOWED.items() if new in targets}


def _is_staff(identity: TokenPayload) -> bool:
    return identity.role == Role.admin


class BookingLifecycle:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.repo = BookingRepository(db)

    # ---------- presentación ----------

    async def _expand(self, docs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Añade resumen de la mascota y servicios a cada reserva."""
        ids = [str(d["_id"]) for d in docs]
        services = await self.repo.services_for(ids)
        pets = await self.repo.pet_summaries(d["pet_id"] for d in docs)
        out = []
        for d in docs:
            item = to_id(d)
            pet = pets.get(d["pet_id"])
            item["pet"] = to_id(pet) if pet else None
            item["services"] = [to_id(s) for s in services.get(item["id"], [])]
            out.append(item)
        return out

    async def _out(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        return (await self._expand([doc]))[0]

    # ---------- operaciones del dueño ----------

    async def create(self, identity: TokenPayload, payload: BookingCreate) -> Dict[str, Any]:
        pet = await self.repo.find_active_pet(payload.pet_id, identity.sub)
        if not pet:
            raise NotFound(
                "Pet not found or you do not have permission to book for this pet",
                error="Pet not found",
            )

        scheduled = as_naive_utc(payload.scheduled_time)
        now = utcnow()
        if scheduled < now:
            raise ValidationFailed(
                "Scheduled time must be in the future",
                details=[{"field": "scheduledTime", "message": "Scheduled time must be in the future"}],
            )

        data = payload.model_dump(exclude={"services", "scheduled_time"})
        doc = {
            **data,
            "pet_id": str(pet["_id"]),
            "pet_owner_id": identity.sub,
            "pilot_id": None,
            "scheduled_time": scheduled,
            "final_price": None,
            "status": S.pending.value,
            "created_at": now,
            "updated_at": now,
        }
        services = [s.model_dump() for s in payload.services]

        async with transaction(self.db) as session:
            booking_id = await self.repo.insert_booking(doc, services, session=session)

        logger.info("Reserva %s creada por %s (%d servicios)", booking_id, identity.sub, len(services))
        doc["_id"] = booking_id
        return await self._out(doc)

    async def list(
        self,
        identity: TokenPayload,
        status: Optional[BookingStatus] = None,
        page: Optional[str] = None,
        limit: Optional[str] = None,
    ) -> Dict[str, Any]:
        page, limit, offset = paginate(page, limit, max_limit=MAX_PAGE_SIZE)
        docs, total = await self.repo.list_owned(identity.sub, status, offset, limit)
        return {
            "bookings": await self._expand(docs),
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": page_count(total, limit),
            },
        }

    async def get(self, identity: TokenPayload, booking_id: str) -> Dict[str, Any]:
        doc = await self.repo.find_owned_booking(booking_id, identity.sub)
        if not doc:
            raise NotFound(
                "Booking not found or you do not have permission to view it",
                error="Booking not found",
            )
        out = await self._out(doc)
        latest = await self.repo.latest_tracking(out["id"])
        out["current_location"] = to_id(latest) if latest else None
        out["messages"] = [to_id(m) for m in await self.repo.recent_messages(out["id"], limit=10)]
        return out

    async def cancel(self, identity: TokenPayload, booking_id: str) -> Dict[str, Any]:
        doc = await self.repo.find_owned_booking(booking_id, identity.sub)
        if not doc:
            raise NotFound(
                "Booking not found or you do not have permission to cancel it",
                error="Booking not found",
            )
        updated = await self.repo.transition(
            doc["_id"],
            CANCELLABLE,
            S.cancelled,
            extra_filter={"pet_owner_id": identity.sub},
            extra_set={STAMPS[S.cancelled]: utcnow()},
        )
        if not updated:
            raise IllegalTransition(
                "Booking cannot be cancelled in its current status",
                error="Cannot cancel booking",
            )
        logger.info("Reserva %s cancelada por %s", booking_id, identity.sub)
        return await self._out(updated)

    async def append_message(self, identity: TokenPayload, booking_id: str, text: Optional[str]) -> Dict[str, Any]:
        body = (text or "").strip()
        if not body:
            raise ValidationFailed("Please provide a message", error="Message required")
        doc = await self.repo.find_owned_booking(booking_id, identity.sub)
        if not doc:
            raise NotFound(
                "Booking not found or you do not have permission to message for it",
                error="Booking not found",
            )
        # Este endpoint es solo del dueño; el piloto escribe por /messages
        msg = await self.repo.insert_message(str(doc["_id"]), body, is_from_pilot=False, sender_id=identity.sub)
        return to_id(msg)

    # ---------- operaciones del piloto ----------

    async def advance_status(self, identity: TokenPayload, booking_id: str, new: BookingStatus) -> Dict[str, Any]:
        if new == S.cancelled:
            raise IllegalTransition(
                "Pilots cannot cancel bookings; the owner must use the cancel endpoint",
                error="Illegal transition",
            )
        doc = await self.repo.find_booking(booking_id)
        if not doc or not self._pilot_may_touch(identity, doc, claiming=new == S.accepted):
            raise NotFound("Booking not found or not assigned to you", error="Booking not found")

        old = S(doc["status"])
        check_transition(old, new)

        if new == S.accepted:
            # Aceptar reclama la reserva si nadie la tiene aún
            pilot_filter = {"pilot_id": {"$in": [None, identity.sub]}}
            if _is_staff(identity):
                pilot_filter = {}
            extra_set = {"pilot_id": doc.get("pilot_id") or identity.sub, STAMPS[new]: utcnow()}
        else:
            pilot_filter = {} if _is_staff(identity) else {"pilot_id": identity.sub}
            extra_set = {STAMPS[new]: utcnow()} if new in STAMPS else {}
            if new == S.completed and doc.get("final_price") is None:
                extra_set["final_price"] = doc.get("estimated_price")

        async with transaction(self.db) as session:
            updated = await self.repo.transition(
                doc["_id"],
                sources_of(new),
                new,
                extra_filter=pilot_filter,
                extra_set=extra_set,
                session=session,
            )
            if not updated:
                # Otro piloto o petición se adelantó entre la lectura y la escritura
                raise IllegalTransition(f"Booking cannot move from {old.value} to {new.value}")
            await self.repo.insert_message(
                str(doc["_id"]),
                STATUS_MESSAGES[new],
                is_from_pilot=True,
                sender_id=identity.sub,
                session=session,
            )

        logger.info("Reserva %s: %s -> %s (piloto %s)", booking_id, old.value, new.value, identity.sub)
        return await self._out(updated)

    def _pilot_may_touch(self, identity: TokenPayload, doc: Dict[str, Any], claiming: bool = False) -> bool:
        if _is_staff(identity):
            return True
        pilot_id = doc.get("pilot_id")
        if pilot_id == identity.sub:
            return True
        return claiming and pilot_id is None

    async def record_tracking(self, identity: TokenPayload, booking_id: str, ping: TrackingIn) -> Dict[str, Any]:
        doc = await self.repo.find_booking(booking_id)
        if not doc or not self._pilot_may_touch(identity, doc):
            raise NotFound("Booking not found or not assigned to you", error="Booking not found")
        if S(doc["status"]) not in TRACKABLE:
            raise IllegalTransition(
                f"Tracking is not available while the booking is {doc['status']}",
                error="Tracking not available",
            )
        row = await self.repo.insert_tracking(str(doc["_id"]), ping.model_dump())
        return to_id(row)

    # ---------- lectura compartida dueño/piloto ----------

    async def _participant_booking(self, identity: TokenPayload, booking_id: str) -> Dict[str, Any]:
        if _is_staff(identity):
            doc = await self.repo.find_booking(booking_id)
        else:
            doc = await self.repo.find_participant_booking(booking_id, identity.sub)
        if not doc:
            raise NotFound(
                "You do not have permission to access this booking",
                error="Booking not found",
            )
        return doc

    async def current_location(self, identity: TokenPayload, booking_id: str) -> Optional[Dict[str, Any]]:
        doc = await self._participant_booking(identity, booking_id)
        latest = await self.repo.latest_tracking(str(doc["_id"]))
        return to_id(latest) if latest else None

    async def thread(
        self,
        identity: TokenPayload,
        booking_id: str,
        page: Optional[str] = None,
        limit: Optional[str] = None,
    ) -> Dict[str, Any]:
        doc = await self._participant_booking(identity, booking_id)
        page, limit, offset = paginate(page, limit, default_limit=50, max_limit=MAX_THREAD_PAGE_SIZE)
        docs, total = await self.repo.thread(str(doc["_id"]), offset, limit)
        return {
            "messages": [to_id(m) for m in docs],
            "pagination": {"page": page, "limit": limit, "total": total, "pages": page_count(total, limit)},
        }

    async def post_to_thread(self, identity: TokenPayload, booking_id: str, text: str) -> Dict[str, Any]:
        doc = await self._participant_booking(identity, booking_id)
        is_from_pilot = doc.get("pilot_id") == identity.sub
        msg = await self.repo.insert_message(str(doc["_id"]), text, is_from_pilot=is_from_pilot, sender_id=identity.sub)
        return to_id(msg)
