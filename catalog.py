"""Catalog reads and stock mutation.

All changes to a product's ``stock`` go through :meth:`Catalog.reserve_stock`
and :meth:`Catalog.release_stock`. Each is a single conditional update, so
concurrent orders can never oversell.

Aggregate ``stock`` is authoritative. Per-variant stock is checked when a
variant is selected but is not decremented.
"""
import logging
from typing import Any, Dict, List, Optional

from pymongo import ReturnDocument
from pymongo.database import Database

import config
from database import storage_errors, to_object_id
from errors import InsufficientStockError, ProductNotFoundError, ValidationError

logger = logging.getLogger(__name__)


def _check_quantity(quantity: int) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise ValidationError("Quantity must be a positive integer")


def primary_image(product: Dict[str, Any]) -> str:
    images = product.get("images") or []
    for image in images:
        if isinstance(image, dict) and image.get("is_default"):
            return image.get("url", "")
    first = images[0] if images else ""
    return first.get("url", "") if isinstance(first, dict) else first


def is_low_stock(product: Dict[str, Any]) -> bool:
    threshold = product.get("low_stock_threshold", config.LOW_STOCK_THRESHOLD)
    return product.get("stock", 0) <= threshold


class Catalog:
    def __init__(self, db: Database):
        self.products = db["product"]

    def get_product(self, product_id) -> Dict[str, Any]:
        oid = to_object_id(product_id, "product id")
        with storage_errors("product lookup"):
            product = self.products.find_one({"_id": oid})
        if not product:
            raise ProductNotFoundError(product_id)
        return product

    def find_product(self, product_id) -> Optional[Dict[str, Any]]:
        try:
            return self.get_product(product_id)
        except ProductNotFoundError:
            return None

    def reserve_stock(self, product_id, quantity: int) -> Dict[str, Any]:
        """Decrement stock by ``quantity`` only if that much is available.

        Returns the updated product. Stock is untouched on failure.
        """
        _check_quantity(quantity)
        oid = to_object_id(product_id, "product id")
        with storage_errors("stock reservation"):
            updated = self.products.find_one_and_update(
                {"_id": oid, "stock": {"$gte": quantity}},
                {"$inc": {"stock": -quantity}},
                return_document=ReturnDocument.AFTER,
            )
            if updated is not None:
                return updated
            current = self.products.find_one({"_id": oid}, {"name": 1, "stock": 1})
        if current is None:
            raise ProductNotFoundError(product_id)
        logger.info("Reservation of %d refused for product %s, %d left", quantity, product_id, current.get("stock", 0))
        raise InsufficientStockError(product_id, current.get("name", str(product_id)), quantity, current.get("stock", 0))

    def release_stock(self, product_id, quantity: int) -> Dict[str, Any]:
        _check_quantity(quantity)
        oid = to_object_id(product_id, "product id")
        with storage_errors("stock release"):
            updated = self.products.find_one_and_update(
                {"_id": oid},
                {"$inc": {"stock": quantity}},
                return_document=ReturnDocument.AFTER,
            )
        if updated is None:
            raise ProductNotFoundError(product_id)
        return updated

    def list_low_stock(self, limit: int = 10) -> List[Dict[str, Any]]:
        query = {"$expr": {"$lte": ["$stock", {"$ifNull": ["$low_stock_threshold", config.LOW_STOCK_THRESHOLD]}]}}
        with storage_errors("low stock listing"):
            return list(self.products.find(query).sort("stock", 1).limit(limit))

    def set_rating(self, product_id, rating: float, review_count: int) -> None:
        oid = to_object_id(product_id, "product id")
        with storage_errors("rating update"):
            self.products.update_one({"_id": oid}, {"$set": {"rating": rating, "review_count": review_count}})


def validate_variants(product: Dict[str, Any], quantity: int, size: Optional[str] = None, color: Optional[str] = None) -> None:
    """Check a line's size/color selection against the product's variant groups."""
    variants = product.get("variants") or {}
    name = product.get("name", str(product.get("_id")))
    for label, group, selected in (("size", "sizes", size), ("color", "colors", color)):
        options = variants.get(group) or []
        if selected is None or not options:
            continue
        match = next((v for v in options if v.get("value") == selected), None)
        if match is None:
            raise ValidationError(f"Invalid {label} '{selected}' for {name}")
        if "stock" in match and match["stock"] < quantity:
            raise InsufficientStockError(product["_id"], f"{name} ({selected})", quantity, match["stock"])
