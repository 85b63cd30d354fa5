"""
Order placement and status updates.

Placing an order reserves stock and writes the order document in a single
datastore transaction, so two concurrent checkouts can never both take the
last unit of a product. Emails go out only after the transaction committed
and can never undo it.
"""
import logging
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import ValidationError as SchemaError

from database import DEFAULT_BASE_DELAY, DEFAULT_MAX_ATTEMPTS, Datastore, run_transaction
from errors import (
    InsufficientStock,
    NotificationError,
    OrderNotFound,
    ProductNotFound,
    ValidationError,
)
from order_status import check_transition, next_status_options, validate_status
from schemas import Order, OrderCreateRequest, OrderLineItem

logger = logging.getLogger(__name__)

PRODUCTS = "products"
ORDERS = "orders"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_datetime(value: Any) -> Optional[datetime]:
    """Read a stored timestamp, which may be a datetime or an ISO string."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def newest_first(orders: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return sorted(orders, key=lambda o: as_datetime(o.get("orderedAt")) or _EPOCH, reverse=True)


def format_schema_errors(exc: SchemaError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')}" if loc else err.get("msg", "invalid"))
    return "; ".join(parts)


def parse_order_request(payload: Union[OrderCreateRequest, Dict[str, Any]]) -> OrderCreateRequest:
    if isinstance(payload, OrderCreateRequest):
        return payload
    if not isinstance(payload, dict):
        raise ValidationError("Order payload must be an object")
    try:
        return OrderCreateRequest.model_validate(payload)
    except SchemaError as e:
        raise ValidationError(format_schema_errors(e)) from e


def coalesce_items(items: List[OrderLineItem]) -> "OrderedDict[str, int]":
    """Sum quantities per product id, keeping first-seen order."""
    quantities: "OrderedDict[str, int]" = OrderedDict()
    for item in items:
        quantities[item.product_id] = quantities.get(item.product_id, 0) + item.quantity
    return quantities


class OrderService:
    def __init__(
        self,
        store: Datastore,
        notifier=None,
        strict_transitions: bool = True,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay: float = DEFAULT_BASE_DELAY,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.notifier = notifier
        self.strict_transitions = strict_transitions
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.clock = clock

    def _run(self, fn):
        return run_transaction(self.store, fn, max_attempts=self.max_attempts, base_delay=self.base_delay)

    def _notify(self, what: str, method: str, *args) -> bool:
        if self.notifier is None:
            return False
        try:
            return bool(getattr(self.notifier, method)(*args))
        except NotificationError as e:
            logger.warning("Failed to send %s: %s", what, e)
            return False
        except Exception:
            logger.exception("Unexpected error sending %s", what)
            return False

    # Reads
    def get_order(self, order_id: str) -> Dict[str, Any]:
        order = self.store.get(ORDERS, order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return order

    def list_orders(self) -> List[Dict[str, Any]]:
        return newest_first(self.store.query(ORDERS))

    def list_user_orders(self, user_id: str) -> List[Dict[str, Any]]:
        return newest_first(self.store.query(ORDERS, {"userId": user_id}))

    def status_options(self, order_id: str) -> List[str]:
        return next_status_options(self.get_order(order_id).get("status"))

    # Writes
    def place_order(self, payload: Union[OrderCreateRequest, Dict[str, Any]]) -> Dict[str, Any]:
        """Reserve stock for every product in the order and create it.

        Raises ValidationError before touching the store, ProductNotFound or
        InsufficientStock when a reservation is refused (nothing is written),
        and TransientStorageError when the transaction kept conflicting.
        """
        req = parse_order_request(payload)
        quantities = coalesce_items(req.items)
        titles: Dict[str, str] = {}
        for item in req.items:
            if item.title and item.product_id not in titles:
                titles[item.product_id] = item.title

        def reserve(txn):
            now = self.clock()
            products = {}
            for product_id in quantities:
                product = txn.get(PRODUCTS, product_id)
                if product is None:
                    raise ProductNotFound(product_id, titles.get(product_id))
                products[product_id] = product

            for product_id, requested in quantities.items():
                product = products[product_id]
                available = int(product.get("stock") or 0)
                if available < requested:
                    title = product.get("title") or titles.get(product_id) or product_id
                    raise InsufficientStock(product_id, title, available, requested)

            for product_id, requested in quantities.items():
                available = int(products[product_id].get("stock") or 0)
                txn.update(PRODUCTS, product_id, {"stock": available - requested, "updatedAt": now})

            items = [
                item if item.title else item.model_copy(update={"title": products[item.product_id].get("title", "")})
                for item in req.items
            ]
            order = Order(
                user_id=req.user_id,
                user_email=req.user_email or "",
                items=items,
                total_amount=req.total_amount,
                status="confirmed",
                payment_method=req.payment_method,
                payment_status="pending" if req.payment_method == "cash_on_delivery" else "paid",
                payment_id=req.payment_id,
                shipping_address=req.shipping_address,
                ordered_at=now,
                updated_at=now,
            ).to_document()
            order_id = txn.add(ORDERS, order)
            return {**order, "id": order_id}

        created = self._run(reserve)
        logger.info(
            "Order %s placed by %s: %d line(s), %d product(s)",
            created["id"], req.user_id, len(req.items), len(quantities),
        )
        self._notify("admin order alert", "send_admin_order_alert", created)
        self._notify("order confirmation", "send_customer_status_email", created, "confirmed")
        return created

    def update_status(self, order_id: str, status: Any) -> Dict[str, Any]:
        """Move an order to ``status`` and email the customer.

        Setting the status an order already has is a no-op in strict mode.
        """
        status = validate_status(status)

        def apply(txn):
            order = txn.get(ORDERS, order_id)
            if order is None:
                raise OrderNotFound(order_id)
            current = order.get("status")
            if current == status and self.strict_transitions:
                return order, False
            check_transition(current, status, strict=self.strict_transitions)
            now = self.clock()
            txn.update(ORDERS, order_id, {"status": status, "updatedAt": now})
            return {**order, "status": status, "updatedAt": now}, True

        order, changed = self._run(apply)
        if changed:
            logger.info("Order %s moved to %s", order_id, status)
            self._notify(
                f"status email for order {order_id}",
                "send_customer_status_email",
                order,
                status,
            )
        return order
