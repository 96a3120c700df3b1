"""
MongoDB access for Alumni Connect

A single pooled client is created at import; handlers receive the database
through the ``get_db`` dependency so tests can substitute it. Every document
written through ``create_document`` carries ``created_at``, ``updated_at`` and
an integer ``version``; ``save_document`` persists a read-modify-write only if
the version it read is still current.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

import config
from errors import ConcurrentModification, ValidationFailed

logger = logging.getLogger(__name__)

try:
    client = MongoClient(config.DATABASE_URL, serverSelectionTimeoutMS=5000)
    db: Optional[Database] = client[config.DATABASE_NAME]
except Exception:
    logger.exception("Could not configure MongoDB client for %s", config.DATABASE_URL)
    client = None
    db = None


def get_db() -> Database:
    if db is None:
        raise RuntimeError("Database not configured")
    return db


def utcnow() -> datetime:
    """Naive UTC, the form MongoDB hands datetimes back in."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_object_id(value: Any, name: str = "id") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise ValidationFailed([{"field": name, "message": f"Invalid {name}"}])


def create_document(db: Database, collection_name: str, data: Union[BaseModel, dict]) -> Dict[str, Any]:
    if isinstance(data, BaseModel):
        doc = data.model_dump()
    else:
        doc = dict(data)
    now = utcnow()
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    doc["version"] = 0
    result = db[collection_name].insert_one(doc)
    doc["_id"] = result.inserted_id
    return doc


def get_documents(
    db: Database,
    collection_name: str,
    filter_dict: Optional[dict] = None,
    sort: Optional[List[tuple]] = None,
    skip: int = 0,
    limit: int = 0,
) -> List[Dict[str, Any]]:
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if skip:
        cursor = cursor.skip(skip)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def find_by_id(db: Database, collection_name: str, doc_id: Any) -> Optional[Dict[str, Any]]:
    return db[collection_name].find_one({"_id": parse_object_id(doc_id)})


def save_document(db: Database, collection_name: str, doc: Dict[str, Any]) -> Dict[str, Any]:
    """Replace ``doc`` if nobody else saved it since it was read."""
    current = doc.get("version", 0)
    doc["version"] = current + 1
    doc["updated_at"] = utcnow()
    result = db[collection_name].replace_one({"_id": doc["_id"], "version": current}, doc)
    if result.matched_count == 0:
        doc["version"] = current
        logger.warning("Version conflict saving %s %s", collection_name, doc["_id"])
        raise ConcurrentModification()
    return doc


def ensure_indexes(db: Database) -> None:
    db["user"].create_index("email", unique=True)
    db["user"].create_index("batch")
    db["user"].create_index("preferences.mentorship_available")
    db["event"].create_index([("date", ASCENDING)])
    db["event"].create_index("organizer")
    db["event"].create_index("status")
    db["chatmessage"].create_index([("created_at", DESCENDING)])
    db["chatmessage"].create_index("sender")
    db["mentorshiprequest"].create_index("mentee")
    db["mentorshiprequest"].create_index("mentor")
    db["mentorshiprequest"].create_index("status")
