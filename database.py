"""
MongoDB access helpers

Collections are named after the lowercase schema class: "user", "product",
"order".
"""
import logging
from datetime import datetime, timezone
from typing import Any, Union

from bson.errors import InvalidId
from bson.objectid import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from config import Settings
from errors import NotFound

logger = logging.getLogger(__name__)


def connect(settings: Settings) -> Database:
    client = MongoClient(settings.database_url)
    return client[settings.database_name]


def ensure_indexes(db: Database) -> None:
    db["user"].create_index([("email", ASCENDING)], unique=True)
    db["user"].create_index([("google_id", ASCENDING)], unique=True, sparse=True)
    db["order"].create_index([("user", ASCENDING)])
    logger.info("Indexes ensured on %s", db.name)


def now() -> datetime:
    return datetime.now(timezone.utc)


def create_document(db: Database, collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a document stamped with created_at/updated_at and return its id."""
    if isinstance(data, BaseModel):
        doc = data.model_dump()
    else:
        doc = dict(data)
    stamp = now()
    doc.setdefault("created_at", stamp)
    doc["updated_at"] = stamp
    result = db[collection_name].insert_one(doc)
    return str(result.inserted_id)


def object_id(value: Any, what: str = "Document") -> ObjectId:
    """Parse a path or body id, treating malformed ids as missing documents."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise NotFound(f"{what} not found")


def serialize_doc(doc):
    """Render a stored document as JSON-friendly output."""
    if not doc:
        return doc
    return {_public_key(k): _serialize_value(v) for k, v in doc.items() if k != "stock_holds"}


def _public_key(key: str) -> str:
    return "id" if key == "_id" else key


def _serialize_value(value):
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        # mongo drops tzinfo on read
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    if isinstance(value, dict):
        return serialize_doc(value)
    if isinstance(value, list):
        return [_serialize_value(v) for v in value]
    return value
