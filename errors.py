"""Exceptions raised by the storefront services.

Every error carries the HTTP status it maps to; ``main`` turns them into
``{"success": false, "message": ...}`` responses.
"""


class ShopError(Exception):
    """Base exception for all storefront errors."""

    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(ShopError):
    """Bad or missing input the client can correct."""

    status_code = 400


class AuthenticationError(ShopError):
    status_code = 401


class ForbiddenError(ShopError):
    """Caller lacks rights over the resource."""

    status_code = 403


class NotFoundError(ShopError):
    status_code = 404


class ProductNotFoundError(NotFoundError):
    def __init__(self, product_id):
        self.product_id = str(product_id)
        super().__init__(f"Product not found: {product_id}")


class OrderProductNotFoundError(ProductNotFoundError):
    """An order line references a product that does not exist.

    Reported as a bad request since the client sent the line.
    """

    status_code = 400


class OrderNotFoundError(NotFoundError):
    def __init__(self, order_id):
        self.order_id = str(order_id)
        super().__init__("Order not found")


class ReviewNotFoundError(NotFoundError):
    def __init__(self, review_id):
        self.review_id = str(review_id)
        super().__init__("Review not found")


class UserNotFoundError(NotFoundError):
    def __init__(self, user_id):
        self.user_id = str(user_id)
        super().__init__("User not found")


class ConflictError(ShopError):
    """The request clashes with the current state of a resource."""

    status_code = 409


class InsufficientStockError(ConflictError):
    status_code = 400

    def __init__(self, product_id, name: str, requested: int, available: int):
        self.product_id = str(product_id)
        self.name = name
        self.requested = requested
        self.available = available
        super().__init__(f"Insufficient stock for {name}")


class InvalidTransitionError(ConflictError):
    status_code = 400

    def __init__(self, current: str, target: str, message: str | None = None):
        self.current = current
        self.target = target
        super().__init__(message or f"Cannot change order status from {current} to {target}")


class DuplicateReviewError(ConflictError):
    status_code = 400

    def __init__(self, product_id):
        self.product_id = str(product_id)
        super().__init__("You have already reviewed this product")


class PersistenceError(ShopError):
    """Storage layer failure; never exposes partial state."""

    status_code = 500

    def __init__(self, operation: str, cause: Exception | None = None):
        self.operation = operation
        self.cause = cause
        msg = f"Storage failure during {operation}"
        if cause is not None:
            msg = f"{msg}: {cause}"
        super().__init__(msg)
