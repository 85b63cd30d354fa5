from datetime import datetime, timezone

import httpx
import pytest
from fastapi.testclient import TestClient

from auth import USERS, create_token
from config import Settings
from database import MemoryStore
from errors import NotificationError
from main import create_app
from payments import RazorpayClient


class FakeNotifier:
    """Records every send. ``fail`` makes every send raise; ``fail_ids`` only for those orders."""

    def __init__(self, fail=False, fail_ids=(), deliver=True, error=NotificationError):
        self.fail = fail
        self.error = error
        self.fail_ids = set(fail_ids)
        self.deliver = deliver
        self.sent = []

    def _record(self, kind, order, *extra):
        if self.fail or order.get("id") in self.fail_ids:
            raise self.error(f"{kind} failed")
        self.sent.append((kind, order.get("id")) + extra)
        return self.deliver

    def send_admin_order_alert(self, order):
        return self._record("admin_alert", order)

    def send_customer_status_email(self, order, status):
        return self._record("status", order, status)

    def send_admin_pending_reminder(self, order):
        return self._record("reminder", order)


def add_product(store, title="Laptop", stock=10, price=50000.0):
    now = datetime.now(timezone.utc)
    return store.add(
        "products",
        {
            "title": title,
            "brand": "Acme",
            "category": "laptops",
            "price": price,
            "stock": stock,
            "createdAt": now,
            "updatedAt": now,
        },
    )


def address(**overrides):
    data = {
        "name": "Asha Rao",
        "phone": "9876543210",
        "street": "12 MG Road",
        "city": "Bengaluru",
        "state": "Karnataka",
        "pincode": "560001",
    }
    data.update(overrides)
    return data


def order_payload(*lines, **overrides):
    """``lines`` are (product_id, quantity) pairs."""
    data = {
        "userId": "user-1",
        "userEmail": "asha@mailbox.in",
        "items": [{"id": pid, "title": "", "price": 100.0, "quantity": qty} for pid, qty in lines],
        "totalAmount": 100.0 * sum(qty for _, qty in lines),
        "paymentMethod": "cod",
        "shippingAddress": address(),
    }
    data.update(overrides)
    return data


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def settings():
    return Settings(
        jwt_secret="test-secret",
        admin_secret="admin-secret",
        razorpay_key_id="rzp_test_key",
        razorpay_key_secret="s3cret",
        seed_demo_products=False,
        reminder_sweep_interval_seconds=0,
    )


@pytest.fixture
def gateway_requests():
    return []


@pytest.fixture
def gateway(settings, gateway_requests):
    def handler(request: httpx.Request):
        gateway_requests.append(request)
        return httpx.Response(200, json={"id": "order_rzp_1", "amount": 49999, "currency": "INR"})

    http = httpx.Client(base_url="https://api.razorpay.test/v1", transport=httpx.MockTransport(handler))
    return RazorpayClient(settings.razorpay_key_id, settings.razorpay_key_secret, http=http)


@pytest.fixture
def client(settings, store, notifier, gateway):
    app = create_app(settings, store=store, notifier=notifier, gateway=gateway)
    with TestClient(app) as c:
        yield c


def _token_for(store, settings, role):
    user = {"name": role.title(), "email": f"{role}@storefront.in", "role": role}
    user_id = store.add(USERS, user)
    return user_id, create_token({**user, "id": user_id}, settings.jwt_secret)


@pytest.fixture
def admin_headers(store, settings):
    _, token = _token_for(store, settings, "admin")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def customer(store, settings):
    user_id, token = _token_for(store, settings, "user")
    return user_id, {"Authorization": f"Bearer {token}"}
