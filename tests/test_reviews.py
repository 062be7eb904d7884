"""Tests for reviews and the product rating cache."""

import pytest
from bson import ObjectId

from errors import DuplicateReviewError, ForbiddenError, ProductNotFoundError, ReviewNotFoundError, ValidationError

from .conftest import line


def rating_of(db, product_id):
    product = db["product"].find_one({"_id": ObjectId(product_id)})
    return product["rating"], product["review_count"]


class TestAggregator:
    def test_round_trip(self, review_service, make_product, db):
        pid = make_product()
        reviews = {}
        for user, stars in (("u1", 5), ("u2", 3), ("u3", 4)):
            reviews[stars] = review_service.create_review(user, pid, stars, "Solid purchase")
        assert rating_of(db, pid) == (4.0, 3)

        review_service.delete_review(reviews[3]["_id"], {"id": "u2", "role": "customer"})
        assert rating_of(db, pid) == (4.5, 2)

        review_service.delete_review(reviews[5]["_id"], {"id": "u1", "role": "customer"})
        review_service.delete_review(reviews[4]["_id"], {"id": "u3", "role": "customer"})
        assert rating_of(db, pid) == (0, 0)

    def test_rounds_to_one_decimal(self, review_service, make_product, db):
        pid = make_product()
        for user, stars in (("u1", 5), ("u2", 4), ("u3", 4)):
            review_service.create_review(user, pid, stars, "Nice")
        assert rating_of(db, pid) == (4.3, 3)

    def test_update_recomputes(self, review_service, make_product, db):
        pid = make_product()
        review = review_service.create_review("u1", pid, 2, "Meh")
        review_service.update_review(review["_id"], "u1", {"rating": 5})
        assert rating_of(db, pid) == (5.0, 1)

    def test_unapproved_reviews_are_excluded(self, review_service, make_product, db):
        pid = make_product()
        keep = review_service.create_review("u1", pid, 5, "Great")
        hide = review_service.create_review("u2", pid, 1, "Spam spam spam")
        review_service.set_approval(hide["_id"], False)
        assert rating_of(db, pid) == (5.0, 1)
        review_service.set_approval(keep["_id"], False)
        assert rating_of(db, pid) == (0, 0)

        items, total = review_service.list_product_reviews(pid)
        assert total == 0
        assert items == []


class TestCreateReview:
    def test_one_review_per_user_and_product(self, review_service, make_product):
        pid = make_product()
        review_service.create_review("u1", pid, 4, "Good")
        with pytest.raises(DuplicateReviewError, match="already reviewed"):
            review_service.create_review("u1", pid, 5, "Changed my mind")

    def test_unknown_product(self, review_service):
        with pytest.raises(ProductNotFoundError):
            review_service.create_review("u1", str(ObjectId()), 4, "Good")

    def test_verified_purchase_requires_delivered_order(self, review_service, builder, lifecycle, make_product, address):
        pid = make_product(stock=5)
        order = builder.place_order("u1", [line(pid, 1)], address, "card")
        assert not review_service.create_review("u2", pid, 4, "Looks nice")["is_verified_purchase"]

        other = make_product(name="Teapot", stock=5)
        builder.place_order("u1", [line(other, 1)], address, "card")
        assert not review_service.create_review("u1", other, 4, "Not here yet")["is_verified_purchase"]

        lifecycle.update_status(order["_id"], "delivered", admin={"id": "a", "role": "admin"})
        assert review_service.create_review("u1", pid, 5, "Arrived fine")["is_verified_purchase"]


class TestUpdateDelete:
    def test_only_owner_updates(self, review_service, make_product):
        pid = make_product()
        review = review_service.create_review("u1", pid, 4, "Good")
        with pytest.raises(ForbiddenError):
            review_service.update_review(review["_id"], "u2", {"rating": 1})

    def test_empty_update(self, review_service, make_product):
        pid = make_product()
        review = review_service.create_review("u1", pid, 4, "Good")
        with pytest.raises(ValidationError):
            review_service.update_review(review["_id"], "u1", {})

    def test_admin_may_delete(self, review_service, make_product, db):
        pid = make_product()
        review = review_service.create_review("u1", pid, 4, "Good")
        review_service.delete_review(review["_id"], {"id": "boss", "role": "admin"})
        assert db["review"].count_documents({}) == 0

    def test_stranger_may_not_delete(self, review_service, make_product):
        pid = make_product()
        review = review_service.create_review("u1", pid, 4, "Good")
        with pytest.raises(ForbiddenError):
            review_service.delete_review(review["_id"], {"id": "u2", "role": "customer"})

    def test_missing_review(self, review_service):
        with pytest.raises(ReviewNotFoundError):
            review_service.update_review(str(ObjectId()), "u1", {"rating": 3})


def test_helpful_votes(review_service, make_product):
    pid = make_product()
    review = review_service.create_review("u1", pid, 4, "Good")
    review_service.mark_helpful(review["_id"])
    assert review_service.mark_helpful(review["_id"])["helpful_votes"] == 2


class TestProductIdCasing:
    def test_duplicate_detected_across_casing(self, review_service, make_product):
        pid = make_product()
        review_service.create_review("u1", pid, 4, "Good")
        with pytest.raises(DuplicateReviewError):
            review_service.create_review("u1", pid.upper(), 5, "Again")

    def test_rating_counts_every_casing(self, review_service, make_product, db):
        pid = make_product()
        review = review_service.create_review("u1", pid, 5, "Great")
        other = review_service.create_review("u2", pid.upper(), 3, "Fine")
        assert review["product_id"] == other["product_id"] == pid
        assert rating_of(db, pid) == (4.0, 2)

        items, total = review_service.list_product_reviews(pid.upper())
        assert total == 2

    def test_verified_purchase_with_upper_case_id(self, review_service, builder, lifecycle, make_product, address):
        pid = make_product(stock=5)
        order = builder.place_order("u1", [line(pid, 1)], address, "card")
        lifecycle.update_status(order["_id"], "delivered", admin={"id": "a", "role": "admin"})
        assert review_service.create_review("u1", pid.upper(), 5, "Arrived fine")["is_verified_purchase"]


class TestClearingFields:
    def test_owner_can_clear_title(self, review_service, make_product):
        pid = make_product()
        review = review_service.create_review("u1", pid, 4, "Good", title="Nice fit")
        updated = review_service.update_review(review["_id"], "u1", {"title": None})
        assert updated["title"] is None
        assert updated["rating"] == 4

    def test_rating_cannot_be_cleared(self, review_service, make_product):
        pid = make_product()
        review = review_service.create_review("u1", pid, 4, "Good")
        with pytest.raises(ValidationError, match="rating cannot be empty"):
            review_service.update_review(review["_id"], "u1", {"rating": None})
