"""Order placement.

Placement validates every line against the catalog before touching stock,
then reserves line by line. A reservation that still fails (stock taken by a
concurrent order between the two passes) releases everything reserved so
far. A failed insert does the same, so a rejected order leaves the catalog
as it found it.
"""
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from catalog import Catalog, primary_image, validate_variants
from errors import InsufficientStockError, OrderProductNotFoundError, PersistenceError, ProductNotFoundError, ShopError, ValidationError
from order_store import OrderStore, utcnow
from schemas import Order, OrderItem, OrderItemIn, ShippingAddress

logger = logging.getLogger(__name__)

DiscountPolicy = Callable[[Optional[str], float], float]
TaxPolicy = Callable[[float, ShippingAddress], float]
ShippingPolicy = Callable[[float, ShippingAddress], float]


def no_discount(coupon_code: Optional[str], subtotal: float) -> float:
    return 0.0


def no_tax(taxable: float, address: ShippingAddress) -> float:
    return 0.0


def free_shipping(subtotal: float, address: ShippingAddress) -> float:
    return 0.0


def money(amount: float) -> float:
    return round(amount, 2)


class OrderBuilder:
    def __init__(
        self,
        catalog: Catalog,
        store: OrderStore,
        discount_policy: DiscountPolicy = no_discount,
        tax_policy: TaxPolicy = no_tax,
        shipping_policy: ShippingPolicy = free_shipping,
    ):
        self.catalog = catalog
        self.store = store
        self.discount_policy = discount_policy
        self.tax_policy = tax_policy
        self.shipping_policy = shipping_policy

    def _validate(self, lines: Sequence[OrderItemIn]) -> List[Tuple[OrderItemIn, Dict[str, Any]]]:
        checked = []
        requested: Dict[str, int] = {}
        # keyed by (product id, size|color, value)
        variant_requested: Dict[Tuple[str, str, str], int] = {}
        for line in lines:
            try:
                product = self.catalog.get_product(line.product)
            except ProductNotFoundError:
                raise OrderProductNotFoundError(line.product)
            pid = str(product["_id"])
            requested[pid] = requested.get(pid, 0) + line.quantity
            if product.get("stock", 0) < requested[pid]:
                raise InsufficientStockError(pid, product["name"], requested[pid], product.get("stock", 0))
            if line.selected_size is not None:
                key = (pid, "size", line.selected_size)
                variant_requested[key] = variant_requested.get(key, 0) + line.quantity
                validate_variants(product, variant_requested[key], size=line.selected_size)
            if line.selected_color is not None:
                key = (pid, "color", line.selected_color)
                variant_requested[key] = variant_requested.get(key, 0) + line.quantity
                validate_variants(product, variant_requested[key], color=line.selected_color)
            checked.append((line, product))
        return checked

    def _reserve(self, checked: List[Tuple[OrderItemIn, Dict[str, Any]]]) -> List[Tuple[str, int]]:
        totals: Dict[str, int] = {}
        for line, product in checked:
            pid = str(product["_id"])
            totals[pid] = totals.get(pid, 0) + line.quantity
        reserved: List[Tuple[str, int]] = []
        for product_id, quantity in totals.items():
            try:
                self.catalog.reserve_stock(product_id, quantity)
            except ProductNotFoundError:
                self._release(reserved)
                raise OrderProductNotFoundError(product_id)
            except ShopError:
                self._release(reserved)
                raise
            reserved.append((product_id, quantity))
        return reserved

    def _release(self, reserved: List[Tuple[str, int]]) -> None:
        for product_id, quantity in reserved:
            logger.warning("Releasing %d of product %s after failed placement", quantity, product_id)
            try:
                self.catalog.release_stock(product_id, quantity)
            except ProductNotFoundError:
                logger.warning("Product %s vanished before its stock could be released", product_id)

    def place_order(
        self,
        user_id: str,
        line_items: Sequence[OrderItemIn],
        shipping_address: ShippingAddress,
        payment_method: str,
        coupon_code: Optional[str] = None,
    ) -> Dict[str, Any]:
        if not line_items:
            raise ValidationError("No order items")

        checked = self._validate(line_items)

        items: List[OrderItem] = []
        subtotal = 0.0
        for line, product in checked:
            subtotal += product["price"] * line.quantity
            items.append(
                OrderItem(
                    product_id=str(product["_id"]),
                    name=product["name"],
                    price=product["price"],
                    quantity=line.quantity,
                    image=primary_image(product),
                    selected_size=line.selected_size,
                    selected_color=line.selected_color,
                )
            )
        subtotal = money(subtotal)

        discount = money(min(max(self.discount_policy(coupon_code, subtotal), 0.0), subtotal))
        tax = money(max(self.tax_policy(subtotal - discount, shipping_address), 0.0))
        shipping = money(max(self.shipping_policy(subtotal, shipping_address), 0.0))
        total = money(subtotal - discount + tax + shipping)

        now = utcnow()
        if payment_method == "cod":
            status, payment_status, paid_at = "pending", "pending", None
        else:
            status, payment_status, paid_at = "confirmed", "paid", now

        draft = Order(
            user_id=user_id,
            items=items,
            shipping_address=shipping_address,
            status=status,
            payment_method=payment_method,
            payment_status=payment_status,
            payment_info={"paid_at": paid_at},
            subtotal=subtotal,
            discount=discount,
            coupon_code=coupon_code,
            shipping=shipping,
            tax=tax,
            total=total,
            status_history=[{"status": status, "timestamp": now, "note": "Order placed"}],
        )

        reserved = self._reserve(checked)
        try:
            order = self.store.create_order(draft)
        except PersistenceError:
            self._release(reserved)
            raise

        logger.info("Order %s placed by user %s: %d item(s), total %.2f", order["order_number"], user_id, len(items), total)
        return order
