"""
MongoDB access for the Basha Lagbe API.

A single synchronous pymongo client is created at import time. Route handlers
receive the database through the ``get_db`` dependency so tests can swap in an
in-memory database.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import HTTPException
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

import config

logger = logging.getLogger(__name__)

client: Optional[MongoClient] = None
db: Optional[Database] = None

if config.DATABASE_URL:
    client = MongoClient(config.DATABASE_URL)
    db = client[config.DATABASE_NAME]


def get_db() -> Database:
    if db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return db


def utcnow() -> datetime:
    # pymongo hands back naive UTC datetimes, so everything stored is naive UTC too
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_obj_id(id_str: Any) -> ObjectId:
    if isinstance(id_str, ObjectId):
        return id_str
    try:
        return ObjectId(id_str)
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid id")


def is_obj_id(value: Any) -> bool:
    return isinstance(value, ObjectId) or ObjectId.is_valid(str(value))


def sanitize(doc: Any) -> Any:
    """Make a Mongo document JSON friendly: ``_id`` becomes ``id`` and every ObjectId a string."""
    if isinstance(doc, ObjectId):
        return str(doc)
    if isinstance(doc, list):
        return [sanitize(v) for v in doc]
    if isinstance(doc, dict):
        d = {}
        for key, value in doc.items():
            if key == "_id":
                d["id"] = sanitize(value)
            else:
                d[key] = sanitize(value)
        return d
    return doc


def create_document(database: Database, collection_name: str, data: Any) -> Dict:
    """Insert a pydantic model or dict with timestamps and return the stored document."""
    doc = data.model_dump(exclude_none=True) if hasattr(data, "model_dump") else dict(data)
    now = utcnow()
    doc.setdefault("createdAt", now)
    doc["updatedAt"] = now
    res = database[collection_name].insert_one(doc)
    doc["_id"] = res.inserted_id
    return doc


def get_documents(database: Database, collection_name: str, filter_dict: Optional[Dict] = None,
                  sort: Optional[List] = None, skip: int = 0, limit: int = 0) -> List[Dict]:
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if skip:
        cursor = cursor.skip(skip)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def paginate(page: int, limit: int, total: int) -> Dict[str, Any]:
    pages = (total + limit - 1) // limit if limit else 0
    return {
        "current": page,
        "pages": pages,
        "total": total,
        "hasNext": page < pages,
        "hasPrev": page > 1,
    }


def ensure_indexes(database: Database) -> None:
    database["user"].create_index("email", unique=True)
    database["user"].create_index("mobileNumber", unique=True, sparse=True)
    database["emailverification"].create_index("expiresAt", expireAfterSeconds=0)
    database["emailverification"].create_index([("email", ASCENDING), ("type", ASCENDING)])
    database["review"].create_index([("propertyId", ASCENDING), ("reviewer", ASCENDING)], unique=True)
    database["notification"].create_index([("userEmail", ASCENDING), ("createdAt", DESCENDING)])
    database["message"].create_index([("sender", ASCENDING), ("receiver", ASCENDING), ("createdAt", DESCENDING)])
    database["message"].create_index([("receiver", ASCENDING), ("isRead", ASCENDING)])
    database["inquiry"].create_index([("landlord", ASCENDING), ("lastActivity", DESCENDING)])
    for field in ("basicInfo.status", "verificationStatus", "pricing.rent.monthly", "rentPrice",
                  "location.address.area", "location.address.district", "owner.userId", "postedBy"):
        database["property"].create_index(field)
    database["property"].create_index([("createdAt", DESCENDING)])
    logger.info("MongoDB indexes ensured on %s", database.name)
