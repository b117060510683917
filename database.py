"""
MongoDB access.

A single MongoClient is created per process and stored on ``app.state``;
handlers receive the database through the ``get_db`` dependency so tests can
hand in any pymongo-compatible database instead.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Request
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from config import Settings
from errors import NotFoundError

logger = logging.getLogger(__name__)

USERS = "user"
PRODUCTS = "product"


def connect(settings: Settings) -> Tuple[MongoClient, Database]:
    client: MongoClient = MongoClient(settings.MONGO_URI, serverSelectionTimeoutMS=5000)
    db = client.get_default_database(default=settings.DB_NAME)
    return client, db


def ping(client: MongoClient) -> None:
    client.admin.command("ping")


def ensure_indexes(db: Database) -> None:
    db[USERS].create_index([("email", ASCENDING)], unique=True)
    db[PRODUCTS].create_index([("approved", ASCENDING), ("createdAt", ASCENDING)])
    db[PRODUCTS].create_index([("seller", ASCENDING)])


def get_db(request: Request) -> Database:
    return request.app.state.db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_object_id(value: str, what: str = "Resource") -> ObjectId:
    """An id that is not a valid ObjectId can never resolve, so it is a 404."""
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise NotFoundError(f"{what} not found")


def _convert(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {k: _convert(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_convert(v) for v in value]
    return value


def serialize_doc(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.pop("_id", None)
    out = {"id": str(_id)} if _id is not None else {}
    # Convert ObjectId in nested fields too (seller, likedBy, ...)
    out.update(_convert(doc))
    return out


def user_out(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    user = serialize_doc(doc)
    if user:
        # Never send password hash
        user.pop("password_hash", None)
    return user
