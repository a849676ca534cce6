# petpilot/utils.py
from typing import Any, Dict, Optional, Union
import math
import re
from bson import ObjectId
from datetime import datetime, timezone


def to_id(doc: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Convierte _id -> id (str) y todos los ObjectIds a strings.
    Los datetime se dejan tal cual; pydantic los serializa en la respuesta.
    Si doc es None, devuelve {}.
    """
    if doc is None:
        return {}
    d = dict(doc)

    if "_id" in d:
        d["id"] = str(d.pop("_id"))

    for key, value in d.items():
        if isinstance(value, ObjectId):
            d[key] = str(value)
        elif isinstance(value, dict):
            d[key] = to_id(value)
        elif isinstance(value, list):
            d[key] = [
                str(item) if isinstance(item, ObjectId)
                else to_id(item) if isinstance(item, dict)
                else item
                for item in value
            ]

    return d


def parse_object_id(value: Any) -> Optional[ObjectId]:
    """
    Devuelve el ObjectId o None si el valor no es un id válido.
    Un id mal formado se trata como "no existe", nunca como 400.
    """
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


def utcnow() -> datetime:
    # Mongo guarda datetimes naive en UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


def parse_int(value: Union[int, str, None]) -> Optional[int]:
    """Entero al inicio del texto ("5", "5abc" -> 5); None si no lo hay."""
    if value is None or isinstance(value, int):
        return value
    match = _LEADING_INT.match(value)
    return int(match.group(1)) if match else None


def paginate(
    page: Union[int, str, None],
    limit: Union[int, str, None],
    default_limit: int = 10,
    max_limit: Optional[int] = None,
) -> tuple[int, int, int]:
    """
    (page, limit, offset). Valores ausentes, no numéricos o menores que 1 vuelven
    al defecto; ``limit`` se recorta a ``max_limit``.
    """
    page = parse_int(page)
    limit = parse_int(limit)
    page = page if page and page > 0 else 1
    limit = limit if limit and limit > 0 else default_limit
    if max_limit is not None:
        limit = min(limit, max_limit)
    return page, limit, (page - 1) * limit


def page_count(total: int, limit: int) -> int:
    return math.ceil(total / limit) if limit else 0
