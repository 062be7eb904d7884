"""Product reviews and the denormalized product rating.

Every review mutation calls :meth:`ReviewAggregator.on_review_changed`
explicitly once the write has landed.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from catalog import Catalog
from database import storage_errors, to_object_id
from errors import DuplicateReviewError, ForbiddenError, PersistenceError, ReviewNotFoundError, ValidationError
from order_store import OrderStore, check_paging, utcnow
from schemas import Review

logger = logging.getLogger(__name__)


class ReviewAggregator:
    """Keeps ``rating``/``review_count`` on a product in line with its approved reviews."""

    def __init__(self, db: Database, catalog: Catalog):
        self.reviews = db["review"]
        self.catalog = catalog

    def on_review_changed(self, product_id: str) -> Tuple[float, int]:
        product_id = str(to_object_id(product_id, "product id"))
        pipeline = [
            {"$match": {"product_id": product_id, "is_approved": True}},
            {"$group": {"_id": "$product_id", "average": {"$avg": "$rating"}, "count": {"$sum": 1}}},
        ]
        with storage_errors("rating aggregation"):
            result = list(self.reviews.aggregate(pipeline))
        if result:
            rating, count = round(result[0]["average"], 1), result[0]["count"]
        else:
            rating, count = 0, 0
        self.catalog.set_rating(product_id, rating, count)
        return rating, count


class ReviewService:
    def __init__(self, db: Database, catalog: Catalog, orders: OrderStore, aggregator: Optional[ReviewAggregator] = None):
        self.reviews = db["review"]
        self.catalog = catalog
        self.orders = orders
        self.aggregator = aggregator or ReviewAggregator(db, catalog)

    def get_review(self, review_id) -> Dict[str, Any]:
        oid = to_object_id(review_id, "review id")
        with storage_errors("review lookup"):
            review = self.reviews.find_one({"_id": oid})
        if not review:
            raise ReviewNotFoundError(review_id)
        return review

    def create_review(
        self,
        user_id: str,
        product_id: str,
        rating: int,
        comment: str,
        title: Optional[str] = None,
        images: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        product_id = str(self.catalog.get_product(product_id)["_id"])
        with storage_errors("review lookup"):
            existing = self.reviews.find_one({"user_id": user_id, "product_id": product_id}, {"_id": 1})
        if existing:
            raise DuplicateReviewError(product_id)

        review = Review(
            user_id=user_id,
            product_id=product_id,
            rating=rating,
            title=title,
            comment=comment,
            images=images or [],
            is_verified_purchase=self.orders.has_delivered_order_with(user_id, product_id),
        )
        doc = review.model_dump()
        now = utcnow()
        doc["created_at"] = now
        doc["updated_at"] = now
        try:
            result = self.reviews.insert_one(doc)
        except DuplicateKeyError:
            raise DuplicateReviewError(product_id)
        except PyMongoError as e:
            logger.exception("Failed to store review by user %s", user_id)
            raise PersistenceError("review insert", e) from e
        doc["_id"] = result.inserted_id

        self.aggregator.on_review_changed(product_id)
        return doc

    def update_review(self, review_id, user_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        review = self.get_review(review_id)
        if review["user_id"] != user_id:
            raise ForbiddenError("Not authorized to update this review")
        changes = {k: v for k, v in fields.items() if k in ("rating", "title", "comment")}
        if not changes:
            raise ValidationError("No fields to update")
        for required in ("rating", "comment"):
            if required in changes and changes[required] is None:
                raise ValidationError(f"{required} cannot be empty")
        changes["updated_at"] = utcnow()
        with storage_errors("review update"):
            updated = self.reviews.find_one_and_update(
                {"_id": review["_id"]}, {"$set": changes}, return_document=ReturnDocument.AFTER
            )
        if updated is None:
            raise ReviewNotFoundError(review_id)
        self.aggregator.on_review_changed(updated["product_id"])
        return updated

    def delete_review(self, review_id, user: Dict[str, Any]) -> None:
        review = self.get_review(review_id)
        if review["user_id"] != user["id"] and user.get("role") != "admin":
            raise ForbiddenError("Not authorized to delete this review")
        with storage_errors("review delete"):
            self.reviews.delete_one({"_id": review["_id"]})
        self.aggregator.on_review_changed(review["product_id"])

    def set_approval(self, review_id, approved: bool) -> Dict[str, Any]:
        oid = to_object_id(review_id, "review id")
        with storage_errors("review moderation"):
            updated = self.reviews.find_one_and_update(
                {"_id": oid},
                {"$set": {"is_approved": approved, "updated_at": utcnow()}},
                return_document=ReturnDocument.AFTER,
            )
        if updated is None:
            raise ReviewNotFoundError(review_id)
        self.aggregator.on_review_changed(updated["product_id"])
        return updated

    def mark_helpful(self, review_id) -> Dict[str, Any]:
        oid = to_object_id(review_id, "review id")
        with storage_errors("helpful vote"):
            updated = self.reviews.find_one_and_update(
                {"_id": oid}, {"$inc": {"helpful_votes": 1}}, return_document=ReturnDocument.AFTER
            )
        if updated is None:
            raise ReviewNotFoundError(review_id)
        return updated

    def list_product_reviews(self, product_id: str, page: int = 1, limit: int = 10):
        product_id = str(self.catalog.get_product(product_id)["_id"])
        page, limit = check_paging(page, limit)
        query = {"product_id": product_id, "is_approved": True}
        with storage_errors("review listing"):
            cursor = self.reviews.find(query).sort([("created_at", DESCENDING), ("_id", DESCENDING)])
            items = list(cursor.skip((page - 1) * limit).limit(limit))
            total = self.reviews.count_documents(query)
        return items, total
