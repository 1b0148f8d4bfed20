import math
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Type, TypeVar

from bson import ObjectId
from fastapi import Query
from pydantic import BaseModel, ValidationError
from pymongo.database import Database

from errors import ValidationFailed, validation_failed_from

M = TypeVar("M", bound=BaseModel)

# Fields of a referenced user profile copied into responses
USER_PROFILE_PUBLIC = ["fullName", "profilePicture"]
USER_PROFILE_CONTACT = ["_id", "email", "fullName", "phoneNumber", "profilePicture", "country", "verified"]
USER_PROFILE_CARD = ["_id", "fullName", "profilePicture", "verified"]
USER_PROFILE_FULL = ["userId", "fullName", "email", "username", "phoneNumber", "country", "role", "verified", "profilePicture"]
STORE_PROFILE_SUMMARY = ["storeName", "description", "branches"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_valid_id(value: Any) -> bool:
    return isinstance(value, ObjectId) or (isinstance(value, str) and ObjectId.is_valid(value))


def to_obj_id(id_str: str, label: str = "ID") -> ObjectId:
    if not is_valid_id(id_str):
        raise ValidationFailed(f"Invalid {label} format")
    return ObjectId(id_str)


def serialize(value: Any) -> Any:
    """Make a pymongo document JSON safe: ObjectIds become strings, datetimes ISO-8601."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        out = {k: serialize(v) for k, v in value.items()}
        if "_id" in out and "id" not in value:
            out["id"] = out["_id"]
        return out
    if isinstance(value, (list, tuple)):
        return [serialize(v) for v in value]
    return value


def stamp_new(doc: Dict[str, Any]) -> Dict[str, Any]:
    now = utcnow()
    doc["createdAt"] = now
    doc["updatedAt"] = now
    return doc


def validate_payload(model: Type[M], data: Any) -> M:
    """Validate a raw request body after the handler has done its own lookups."""
    if not isinstance(data, dict):
        raise ValidationFailed("Invalid request body")
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise validation_failed_from(e)


def allowed_fields(data: Dict[str, Any], allow: Iterable[str]) -> Dict[str, Any]:
    """Keep only allow-listed keys; anything else is dropped without complaint."""
    allow = set(allow)
    return {k: v for k, v in data.items() if k in allow}


def without_nulls(data: Dict[str, Any]) -> Dict[str, Any]:
    """Drop keys sent as explicit ``null`` so a partial update never blanks a field."""
    return {k: v for k, v in data.items() if v is not None}


class PageParams:
    def __init__(
        self,
        page: int = Query(1, ge=1),
        limit: int = Query(10, ge=1, le=100),
    ):
        self.page = page
        self.limit = limit

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit


def pagination(page: int, limit: int, total_docs: int) -> Dict[str, Any]:
    total_pages = math.ceil(total_docs / limit) if limit else 0
    return {
        "page": page,
        "limit": limit,
        "totalDocs": total_docs,
        "totalPages": total_pages,
        "hasNextPage": page < total_pages,
        "hasPrevPage": page > 1,
    }


def project(doc: Optional[Dict[str, Any]], fields: List[str]) -> Optional[Dict[str, Any]]:
    if doc is None:
        return None
    out = {"_id": doc["_id"]}
    for f in fields:
        if f in doc:
            out[f] = doc[f]
    return out


def populate(
    db: Database,
    docs: List[Dict[str, Any]],
    field: str,
    collection: str,
    fields: List[str],
    match_on: str = "_id",
    into: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Replace each document's ``field`` reference with selected fields of the referenced document.

    References are resolved with one ``$in`` query per call. A reference that
    no longer resolves becomes ``None``.
    """
    into = into or field
    keys = [d.get(field) for d in docs if d.get(field) is not None]
    if not keys:
        for d in docs:
            if field in d:
                d[into] = None
        return docs
    if match_on == "_id":
        keys = [ObjectId(k) if isinstance(k, str) and ObjectId.is_valid(k) else k for k in keys]
    found = {str(r[match_on]): r for r in db[collection].find({match_on: {"$in": keys}})}
    for d in docs:
        ref = d.get(field)
        if ref is None and field not in d:
            continue
        d[into] = project(found.get(str(ref)), fields)
    return docs


def populate_one(db: Database, doc: Dict[str, Any], field: str, collection: str, fields: List[str], **kw) -> Dict[str, Any]:
    return populate(db, [doc], field, collection, fields, **kw)[0]


def envelope(data: Any = None, message: Optional[str] = None, **extra: Any) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": True}
    if message is not None:
        body["message"] = message
    if data is not None:
        body["data"] = serialize(data)
    body.update(extra)
    return body
