"""
Error taxonomy for the storefront backend.

Every error carries the HTTP status the route layer answers with and a
``detail`` payload that is safe to show to the caller.
"""
from typing import Any, Dict, Optional


class ShopError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def detail(self) -> Any:
        return self.message


class ValidationError(ShopError):
    status_code = 400


class ProductNotFound(ShopError):
    status_code = 400

    def __init__(self, product_id: str, title: Optional[str] = None):
        self.product_id = product_id
        self.title = title
        super().__init__(f"Product not found: {title or product_id}")

    @property
    def detail(self) -> Dict[str, Any]:
        return {"error": self.message, "productId": self.product_id, "title": self.title}


class InsufficientStock(ShopError):
    status_code = 400

    def __init__(self, product_id: str, title: str, available: int, requested: int):
        self.product_id = product_id
        self.title = title
        self.available = available
        self.requested = requested
        super().__init__(f"Insufficient stock for {title}: {available} available, {requested} requested")

    @property
    def detail(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "productId": self.product_id,
            "title": self.title,
            "available": self.available,
            "requested": self.requested,
        }


class InvalidStatus(ShopError):
    status_code = 400

    def __init__(self, status: Any):
        self.status = status
        super().__init__(f"Invalid status value: {status}")


class InvalidTransition(ShopError):
    status_code = 400

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move order from {current} to {requested}")


class OrderNotFound(ShopError):
    status_code = 404

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__("Order not found")


class TransactionConflict(ShopError):
    """Raised by a datastore when a transaction lost an optimistic-concurrency race."""


class TransientStorageError(ShopError):
    status_code = 500


class PaymentConfigError(ShopError):
    status_code = 500


class PaymentGatewayError(ShopError):
    status_code = 502


class NotificationError(ShopError):
    pass
