"""
Transactional email through the Resend HTTP API.

Every send returns True when a message went out and False when there was
nobody to send to (no API key, no admin address, no customer email).
Delivery failures raise NotificationError; callers log and move on.
"""
import logging
from typing import Any, Dict, Optional

import httpx

from errors import NotificationError
from order_status import status_message

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com"


def format_currency(amount: Any) -> str:
    try:
        value = float(amount or 0)
    except (TypeError, ValueError):
        value = 0.0
    if value.is_integer():
        return f"Rs. {value:,.0f}"
    return f"Rs. {value:,.2f}"


def _customer_name(order: Dict[str, Any], default: str) -> str:
    return (order.get("shippingAddress") or {}).get("name") or default


class ResendNotifier:
    def __init__(
        self,
        api_key: Optional[str],
        admin_email: Optional[str] = None,
        from_email: str = "onboarding@resend.dev",
        base_url: str = RESEND_API_URL,
        http: Optional[httpx.Client] = None,
    ):
        self.api_key = api_key
        self.admin_email = admin_email
        self.from_email = from_email
        self._http = http or httpx.Client(base_url=base_url, timeout=10.0)

    def _send(self, to: Optional[str], subject: str, html: str) -> bool:
        if not self.api_key or not to:
            return False
        try:
            response = self._http.post(
                "/emails",
                json={"from": self.from_email, "to": [to], "subject": subject, "html": html},
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        except httpx.HTTPError as e:
            raise NotificationError(f"Email API unreachable: {e}") from e
        if response.is_error:
            raise NotificationError(f"Email API failed: {response.status_code} {response.text[:200]}")
        return True

    def send_admin_order_alert(self, order: Dict[str, Any]) -> bool:
        html = (
            "<h3>New order confirmed</h3>"
            f"<p><strong>Order ID:</strong> {order.get('id')}</p>"
            f"<p><strong>Customer:</strong> {_customer_name(order, 'N/A')} ({order.get('userEmail') or 'No email'})</p>"
            f"<p><strong>Total:</strong> {format_currency(order.get('totalAmount'))}</p>"
            "<p>Please open admin panel to process this order.</p>"
        )
        return self._send(self.admin_email, f"New confirmed order: {order.get('id')}", html)

    def send_customer_status_email(self, order: Dict[str, Any], status: str) -> bool:
        html = (
            "<h3>Order Update</h3>"
            f"<p>Hello {_customer_name(order, 'Customer')},</p>"
            f"<p>{status_message(status)}</p>"
            f"<p><strong>Order ID:</strong> {order.get('id')}</p>"
            f"<p><strong>Total:</strong> {format_currency(order.get('totalAmount'))}</p>"
        )
        return self._send(order.get("userEmail"), f"Order {order.get('id')} status: {status}", html)

    def send_admin_pending_reminder(self, order: Dict[str, Any]) -> bool:
        html = (
            "<h3>Order still waiting</h3>"
            f"<p><strong>Order ID:</strong> {order.get('id')}</p>"
            f"<p><strong>Status:</strong> {order.get('status')}</p>"
            f"<p><strong>Ordered at:</strong> {order.get('orderedAt')}</p>"
            f"<p><strong>Customer:</strong> {_customer_name(order, 'N/A')}</p>"
            f"<p><strong>Total:</strong> {format_currency(order.get('totalAmount'))}</p>"
            "<p>This order has not moved past packing for over a day.</p>"
        )
        return self._send(self.admin_email, f"Pending order reminder: {order.get('id')}", html)

    def close(self) -> None:
        self._http.close()
