"""Order persistence and order numbering."""
import logging
import math
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

import config
from database import storage_errors, to_object_id
from errors import OrderNotFoundError, PersistenceError, ValidationError
from schemas import Order

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def check_paging(page: int, limit: int) -> Tuple[int, int]:
    if page < 1:
        raise ValidationError("page must be >= 1")
    if limit < 1 or limit > config.MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {config.MAX_PAGE_SIZE}")
    return page, limit


def pagination(page: int, limit: int, total: int) -> Dict[str, int]:
    return {"page": page, "limit": limit, "total": total, "pages": math.ceil(total / limit)}


class OrderStore:
    """Stores order aggregates in the ``order`` collection.

    Order numbers look like ``ORD-261018-000042``: a prefix, the UTC day and
    a per-day sequence drawn from an atomic counter. The unique index on
    ``order_number`` catches anything the counter misses (e.g. a counter
    reset), in which case a fresh number is drawn.
    """

    def __init__(self, db: Database, clock: Callable[[], datetime] = utcnow):
        self.orders = db["order"]
        self.counters = db["counter"]
        self.clock = clock

    def next_order_number(self) -> str:
        day = self.clock().strftime("%y%m%d")
        with storage_errors("order number allocation"):
            counter = self.counters.find_one_and_update(
                {"_id": f"order:{day}"},
                {"$inc": {"seq": 1}},
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        return f"{config.ORDER_NUMBER_PREFIX}-{day}-{counter['seq']:06d}"

    def create_order(self, draft: Order) -> Dict[str, Any]:
        doc = draft.model_dump()
        now = self.clock()
        doc["created_at"] = now
        doc["updated_at"] = now
        for _ in range(config.ORDER_NUMBER_ATTEMPTS):
            doc["order_number"] = self.next_order_number()
            doc.pop("_id", None)
            try:
                result = self.orders.insert_one(doc)
            except DuplicateKeyError:
                logger.warning("Order number %s already taken, drawing another", doc["order_number"])
                continue
            except PyMongoError as e:
                logger.exception("Failed to persist order for user %s", draft.user_id)
                raise PersistenceError("order insert", e) from e
            doc["_id"] = result.inserted_id
            return doc
        raise PersistenceError("order insert", RuntimeError("could not allocate a unique order number"))

    def get_order(self, order_id) -> Dict[str, Any]:
        oid = to_object_id(order_id, "order id")
        with storage_errors("order lookup"):
            order = self.orders.find_one({"_id": oid})
        if not order:
            raise OrderNotFoundError(order_id)
        return order

    def _page(self, query: dict, page: int, limit: int) -> Tuple[List[Dict[str, Any]], int]:
        page, limit = check_paging(page, limit)
        skip = (page - 1) * limit
        with storage_errors("order listing"):
            cursor = self.orders.find(query).sort([("created_at", DESCENDING), ("_id", DESCENDING)]).skip(skip).limit(limit)
            items = list(cursor)
            total = self.orders.count_documents(query)
        return items, total

    def list_orders_for_user(self, user_id: str, page: int = 1, limit: int = config.DEFAULT_PAGE_SIZE):
        return self._page({"user_id": user_id}, page, limit)

    def list_orders(self, status: Optional[str] = None, payment_status: Optional[str] = None, page: int = 1, limit: int = 20):
        query: Dict[str, Any] = {}
        if status:
            query["status"] = status
        if payment_status:
            query["payment_status"] = payment_status
        return self._page(query, page, limit)

    def has_delivered_order_with(self, user_id: str, product_id: str) -> bool:
        product_id = str(to_object_id(product_id, "product id"))
        with storage_errors("purchase lookup"):
            found = self.orders.find_one({"user_id": user_id, "items.product_id": product_id, "status": "delivered"}, {"_id": 1})
        return found is not None

    def compare_and_set_status(self, order_id, expected: str, new_status: str, note: Optional[str] = None, extra: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        """Move an order from ``expected`` to ``new_status`` in one update.

        Appends the history entry in the same write. Returns the updated
        order, or None if the order is no longer in ``expected``.
        """
        oid = to_object_id(order_id, "order id")
        now = self.clock()
        fields = dict(extra or {})
        fields.update({"status": new_status, "updated_at": now})
        entry = {"status": new_status, "timestamp": now, "note": note}
        with storage_errors("order status update"):
            return self.orders.find_one_and_update(
                {"_id": oid, "status": expected},
                {"$set": fields, "$push": {"status_history": entry}},
                return_document=ReturnDocument.AFTER,
            )

    def update_fields(self, order_id, fields: Dict[str, Any]) -> Dict[str, Any]:
        oid = to_object_id(order_id, "order id")
        fields = dict(fields)
        fields.pop("status", None)
        fields.pop("status_history", None)
        fields["updated_at"] = self.clock()
        with storage_errors("order update"):
            order = self.orders.find_one_and_update({"_id": oid}, {"$set": fields}, return_document=ReturnDocument.AFTER)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order
