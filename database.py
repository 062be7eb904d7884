"""
Database helpers

MongoDB access for the storefront. Each collection is named after the
lowercased schema class (Product -> "product").
"""
from contextlib import contextmanager
from typing import Any, Dict

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError

import config
from errors import PersistenceError, ValidationError

client = MongoClient(config.DATABASE_URL, serverSelectionTimeoutMS=5000)
db = client[config.DATABASE_NAME]


def get_db() -> Database:
    """FastAPI dependency; tests override it with an in-memory database."""
    return db


def ensure_indexes(database: Database) -> None:
    database["order"].create_index("order_number", unique=True)
    database["order"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    database["review"].create_index([("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True)
    database["review"].create_index([("product_id", ASCENDING), ("is_approved", ASCENDING)])


def to_object_id(value: Any, label: str = "id") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    if not isinstance(value, str) or not ObjectId.is_valid(value):
        raise ValidationError(f"Invalid {label}")
    return ObjectId(value)


def _serialize_value(v: Any) -> Any:
    if isinstance(v, ObjectId):
        return str(v)
    if isinstance(v, dict):
        return {k: _serialize_value(x) for k, x in v.items()}
    if isinstance(v, list):
        return [_serialize_value(x) for x in v]
    return v


def serialize_doc(doc: Dict[str, Any]) -> Dict[str, Any]:
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.pop("_id", None)
    if _id is not None:
        doc["id"] = str(_id)
    # Convert ObjectId in nested fields (order items, history) as well
    return {k: _serialize_value(v) for k, v in doc.items()}


@contextmanager
def storage_errors(operation: str):
    """Re-raise driver failures as PersistenceError."""
    try:
        yield
    except PyMongoError as e:
        raise PersistenceError(operation, e) from e
