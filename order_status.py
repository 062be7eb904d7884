"""Order status lifecycle.

Happy path::

    pending -> confirmed -> processing -> shipped -> out_for_delivery -> delivered

Forward moves may skip steps; nothing moves backwards. ``cancelled`` is only
reachable from pending/confirmed and ``refunded`` only from delivered or
cancelled. Customers may only cancel their own orders; admins get the whole
table. Every change is a compare-and-set on the current status that appends
to ``status_history`` in the same write.
"""
import logging
from typing import Any, Dict, FrozenSet, Optional

from catalog import Catalog
from errors import ConflictError, ForbiddenError, InvalidTransitionError, ProductNotFoundError
from order_store import OrderStore

logger = logging.getLogger(__name__)

HAPPY_PATH = ("pending", "confirmed", "processing", "shipped", "out_for_delivery", "delivered")
CANCELLABLE = frozenset({"pending", "confirmed"})
REFUNDABLE = frozenset({"delivered", "cancelled"})


def _admin_targets(status: str) -> FrozenSet[str]:
    targets = set()
    if status in HAPPY_PATH:
        targets.update(HAPPY_PATH[HAPPY_PATH.index(status) + 1:])
    if status in CANCELLABLE:
        targets.add("cancelled")
    if status in REFUNDABLE:
        targets.add("refunded")
    return frozenset(targets)


ADMIN_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    s: _admin_targets(s) for s in HAPPY_PATH + ("cancelled", "refunded")
}
CUSTOMER_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    s: frozenset({"cancelled"}) if s in CANCELLABLE else frozenset() for s in ADMIN_TRANSITIONS
}
TRANSITIONS = {"admin": ADMIN_TRANSITIONS, "customer": CUSTOMER_TRANSITIONS}


def can_transition(current: str, target: str, role: str = "admin") -> bool:
    return target in TRANSITIONS[role].get(current, frozenset())


def check_transition(current: str, target: str, role: str = "admin") -> None:
    if not can_transition(current, target, role):
        if target == "cancelled" and role == "customer":
            raise InvalidTransitionError(current, target, "Cannot cancel order in current status")
        raise InvalidTransitionError(current, target)


class StatusLifecycle:
    def __init__(self, catalog: Catalog, store: OrderStore):
        self.catalog = catalog
        self.store = store

    def _restore_stock(self, order: Dict[str, Any]) -> None:
        for item in order.get("items", []):
            try:
                self.catalog.release_stock(item["product_id"], item["quantity"])
            except ProductNotFoundError:
                logger.warning(
                    "Order %s: product %s no longer exists, %d unit(s) not restocked",
                    order.get("order_number"), item["product_id"], item["quantity"],
                )

    def _transition(self, order: Dict[str, Any], target: str, note: Optional[str], extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        current = order["status"]
        fields = dict(extra or {})
        if target == "delivered":
            fields["delivered_at"] = self.store.clock()
        if target == "refunded" and order.get("payment_status") == "paid":
            fields["payment_status"] = "refunded"
        updated = self.store.compare_and_set_status(order["_id"], current, target, note, fields)
        if updated is None:
            raise ConflictError("Order was modified concurrently, please retry")
        if target == "cancelled":
            self._restore_stock(updated)
        logger.info("Order %s: %s -> %s", updated.get("order_number"), current, target)
        return updated

    def cancel_order(self, order_id, requesting_user_id: str, note: Optional[str] = None) -> Dict[str, Any]:
        order = self.store.get_order(order_id)
        if order["user_id"] != requesting_user_id:
            raise ForbiddenError("Not authorized to cancel this order")
        check_transition(order["status"], "cancelled", role="customer")
        return self._transition(order, "cancelled", note or "Cancelled by customer")

    def update_status(
        self,
        order_id,
        new_status: Optional[str] = None,
        admin: Optional[Dict[str, Any]] = None,
        note: Optional[str] = None,
        **fields: Any,
    ) -> Dict[str, Any]:
        """Admin update: optional status change plus tracking/notes fields.

        A ``new_status`` equal to the current one is not a transition and
        leaves the history alone.
        """
        if admin is not None and admin.get("role") != "admin":
            raise ForbiddenError("Admins only")
        order = self.store.get_order(order_id)
        fields = {k: v for k, v in fields.items() if v is not None}
        if new_status and new_status != order["status"]:
            check_transition(order["status"], new_status, role="admin")
            return self._transition(order, new_status, note, fields)
        if fields:
            return self.store.update_fields(order["_id"], fields)
        return order
