"""
Consultas tipadas sobre las colecciones de reservas.

La existencia y la propiedad de una reserva se resuelven siempre en una única
consulta (``find_owned_booking``); quien llama solo ve "no encontrada".
"""
from typing import Any, Dict, Iterable, List, Optional, Tuple

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClientSession, AsyncIOMotorDatabase
from pymongo import ReturnDocument

from .schemas.booking import BookingStatus
from .utils import parse_object_id, utcnow

Doc = Dict[str, Any]
Session = Optional[AsyncIOMotorClientSession]


class BookingRepository:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    # ---------- pets ----------

    async def find_active_pet(self, pet_id: str, owner_id: str) -> Optional[Doc]:
        oid = parse_object_id(pet_id)
        if oid is None:
            return None
        return await self.db.pets.find_one({"_id": oid, "owner_id": owner_id, "is_active": True})

    async def pet_summaries(self, pet_ids: Iterable[str]) -> Dict[str, Doc]:
        oids = [oid for oid in (parse_object_id(p) for p in set(pet_ids)) if oid is not None]
        if not oids:
            return {}
        out = {}
        async for pet in self.db.pets.find({"_id": {"$in": oids}}):
            out[str(pet["_id"])] = pet
        return out

    # ---------- bookings ----------

    async def insert_booking(self, doc: Doc, services: List[Doc], session: Session = None) -> ObjectId:
        res = await self.db.bookings.insert_one(doc, session=session)
        if services:
            rows = [{**s, "booking_id": str(res.inserted_id)} for s in services]
            await self.db.booking_services.insert_many(rows, session=session)
        return res.inserted_id

    async def find_owned_booking(self, booking_id: str, owner_id: str) -> Optional[Doc]:
        oid = parse_object_id(booking_id)
        if oid is None:
            return None
        return await self.db.bookings.find_one({"_id": oid, "pet_owner_id": owner_id})

    async def find_participant_booking(self, booking_id: str, user_id: str) -> Optional[Doc]:
        """Reserva visible para su dueño o para el piloto asignado."""
        oid = parse_object_id(booking_id)
        if oid is None:
            return None
        return await self.db.bookings.find_one({
            "_id": oid,
            "$or": [{"pet_owner_id": user_id}, {"pilot_id": user_id}],
        })

    async def find_booking(self, booking_id: str) -> Optional[Doc]:
        oid = parse_object_id(booking_id)
        if oid is None:
            return None
        return await self.db.bookings.find_one({"_id": oid})

    async def list_owned(
        self,
        owner_id: str,
        status: Optional[BookingStatus],
        offset: int,
        limit: int,
    ) -> Tuple[List[Doc], int]:
        query: Doc = {"pet_owner_id": owner_id}
        if status is not None:
            query["status"] = status.value
        cursor = self.db.bookings.find(query).sort([("created_at", -1), ("_id", -1)]).skip(offset).limit(limit)
        docs = await cursor.to_list(length=limit)
        total = await self.db.bookings.count_documents(query)
        return docs, total

    async def services_for(self, booking_ids: Iterable[str]) -> Dict[str, List[Doc]]:
        ids = list(set(booking_ids))
        out: Dict[str, List[Doc]] = {i: [] for i in ids}
        if not ids:
            return out
        async for row in self.db.booking_services.find({"booking_id": {"$in": ids}}):
            out.setdefault(row["booking_id"], []).append(row)
        return out

    async def transition(
        self,
        booking_id: ObjectId,
        from_statuses: Iterable[BookingStatus],
        to_status: BookingStatus,
        extra_filter: Optional[Doc] = None,
        extra_set: Optional[Doc] = None,
        session: Session = None,
    ) -> Optional[Doc]:
        """
        Cambio de estado en una sola sentencia condicional. Devuelve el
        documento actualizado, o None si el estado actual (o el filtro extra)
        ya no coincide.
        """
        query: Doc = {"_id": booking_id, "status": {"$in": [s.value for s in from_statuses]}}
        if extra_filter:
            query.update(extra_filter)
        now = utcnow()
        changes = {"status": to_status.value, "updated_at": now}
        if extra_set:
            changes.update(extra_set)
        return await self.db.bookings.find_one_and_update(
            query,
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
            session=session,
        )

    # ---------- messages ----------

    async def insert_message(
        self,
        booking_id: str,
        text: str,
        is_from_pilot: bool,
        sender_id: Optional[str],
        session: Session = None,
    ) -> Doc:
        doc = {
            "booking_id": booking_id,
            "message": text,
            "is_from_pilot": is_from_pilot,
            "sender_id": sender_id,
            "timestamp": utcnow(),
        }
        res = await self.db.booking_messages.insert_one(doc, session=session)
        doc["_id"] = res.inserted_id
        return doc

    async def recent_messages(self, booking_id: str, limit: int = 10) -> List[Doc]:
        cursor = self.db.booking_messages.find({"booking_id": booking_id}).sort([("timestamp", -1), ("_id", -1)]).limit(limit)
        return await cursor.to_list(length=limit)

    async def thread(self, booking_id: str, offset: int, limit: int) -> Tuple[List[Doc], int]:
        query = {"booking_id": booking_id}
        cursor = self.db.booking_messages.find(query).sort([("timestamp", 1), ("_id", 1)]).skip(offset).limit(limit)
        docs = await cursor.to_list(length=limit)
        total = await self.db.booking_messages.count_documents(query)
        return docs, total

    # ---------- tracking ----------

    async def insert_tracking(self, booking_id: str, ping: Doc) -> Doc:
        doc = {**ping, "booking_id": booking_id, "timestamp": utcnow()}
        res = await self.db.booking_tracking.insert_one(doc)
        doc["_id"] = res.inserted_id
        return doc

    async def latest_tracking(self, booking_id: str) -> Optional[Doc]:
        cursor = self.db.booking_tracking.find({"booking_id": booking_id}).sort([("timestamp", -1), ("_id", -1)]).limit(1)
        docs = await cursor.to_list(length=1)
        return docs[0] if docs else None
