import json

import httpx
import pytest

from errors import NotificationError
from notifications import ResendNotifier, format_currency

ORDER = {
    "id": "ord_1",
    "userEmail": "asha@mailbox.in",
    "totalAmount": 62990,
    "status": "confirmed",
    "shippingAddress": {"name": "Asha Rao"},
}


def _notifier(handler, api_key="re_test", admin_email="admin@shop.test"):
    http = httpx.Client(base_url="https://api.resend.test", transport=httpx.MockTransport(handler))
    return ResendNotifier(api_key, admin_email, "shop@shop.test", http=http)


def test_customer_status_email():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"id": "email_1"})

    assert _notifier(handler).send_customer_status_email(ORDER, "shipped") is True

    body = json.loads(seen[0].content)
    assert seen[0].url.path == "/emails"
    assert seen[0].headers["Authorization"] == "Bearer re_test"
    assert body["to"] == ["asha@mailbox.in"]
    assert body["from"] == "shop@shop.test"
    assert body["subject"] == "Order ord_1 status: shipped"
    assert "Your order has been shipped." in body["html"]
    assert "Rs. 62,990" in body["html"]


def test_admin_alert_goes_to_admin():
    seen = []

    def handler(request):
        seen.append(json.loads(request.content))
        return httpx.Response(200, json={})

    assert _notifier(handler).send_admin_order_alert(ORDER) is True
    assert seen[0]["to"] == ["admin@shop.test"]
    assert seen[0]["subject"] == "New confirmed order: ord_1"


def test_nothing_sent_without_recipient_or_key():
    def handler(request):
        raise AssertionError("no request expected")

    assert _notifier(handler, admin_email=None).send_admin_pending_reminder(ORDER) is False
    assert _notifier(handler).send_customer_status_email({**ORDER, "userEmail": ""}, "packed") is False
    assert _notifier(handler, api_key=None).send_admin_order_alert(ORDER) is False


def test_api_failure_raises_notification_error():
    notifier = _notifier(lambda request: httpx.Response(500, text="boom"))
    with pytest.raises(NotificationError):
        notifier.send_admin_order_alert(ORDER)


def test_format_currency():
    assert format_currency(1234) == "Rs. 1,234"
    assert format_currency(99.5) == "Rs. 99.50"
    assert format_currency(None) == "Rs. 0"
