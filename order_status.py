"""
Order lifecycle.

    confirmed -> packed -> shipped -> out_for_delivery -> delivered

``cancelled`` can be reached from any non-terminal status. ``delivered`` and
``cancelled`` are terminal.
"""
from typing import List, Literal, Optional, Tuple, get_args

from errors import InvalidStatus, InvalidTransition

OrderStatus = Literal["confirmed", "packed", "shipped", "out_for_delivery", "delivered", "cancelled"]

ORDER_STATUSES: Tuple[str, ...] = get_args(OrderStatus)
FORWARD_SEQUENCE: Tuple[str, ...] = ORDER_STATUSES[:-1]
CANCELLED = "cancelled"
TERMINAL_STATUSES = frozenset({"delivered", CANCELLED})

STATUS_MESSAGES = {
    "confirmed": "Your order is confirmed and waiting for shipping.",
    "packed": "Your order has been packed.",
    "shipped": "Your order has been shipped.",
    "out_for_delivery": "Your order is out for delivery.",
    "delivered": "Your order has been delivered.",
    "cancelled": "Your order has been cancelled.",
}


def validate_status(value) -> str:
    if value not in ORDER_STATUSES:
        raise InvalidStatus(value)
    return value


def is_terminal(status: Optional[str]) -> bool:
    return status in TERMINAL_STATUSES


def next_status_options(current: Optional[str]) -> List[str]:
    """Statuses an admin may move an order to from ``current``."""
    if is_terminal(current):
        return []
    if current not in FORWARD_SEQUENCE:
        return list(FORWARD_SEQUENCE)
    index = FORWARD_SEQUENCE.index(current)
    return list(FORWARD_SEQUENCE[index + 1:]) + [CANCELLED]


def check_transition(current: Optional[str], requested: str, strict: bool = True) -> str:
    """Validate moving an order from ``current`` to ``requested``.

    Unknown statuses are always rejected. With ``strict`` off any known status
    is accepted, including backwards moves and moves out of terminal states.
    """
    validate_status(requested)
    if strict and requested not in next_status_options(current):
        raise InvalidTransition(current or "unknown", requested)
    return requested


def status_message(status: str) -> str:
    return STATUS_MESSAGES.get(status, f"Your order status is now {status}.")
