import base64
import hashlib
import hmac
import json

import httpx
import pytest

from errors import PaymentConfigError, PaymentGatewayError
from payments import RazorpayClient, expected_signature, new_receipt, verify_signature

SECRET = "s3cret"


def reference_signature():
    return hmac.new(b"s3cret", b"order_1|pay_1", hashlib.sha256).hexdigest()


def test_expected_signature_matches_hmac_sha256():
    assert expected_signature("order_1", "pay_1", SECRET) == reference_signature()


def test_valid_signature_verifies():
    assert verify_signature("order_1", "pay_1", reference_signature(), SECRET) is True


def test_any_altered_character_fails():
    good = reference_signature()
    for i, ch in enumerate(good):
        replacement = "0" if ch != "0" else "1"
        tampered = good[:i] + replacement + good[i + 1:]
        assert verify_signature("order_1", "pay_1", tampered, SECRET) is False


def test_uppercase_hex_is_not_accepted():
    assert verify_signature("order_1", "pay_1", reference_signature().upper(), SECRET) is False


def test_swapped_ids_fail():
    assert verify_signature("pay_1", "order_1", reference_signature(), SECRET) is False


def test_missing_secret_is_a_config_error():
    with pytest.raises(PaymentConfigError):
        verify_signature("order_1", "pay_1", reference_signature(), None)


def _client(handler, key_id="rzp_key", key_secret=SECRET):
    http = httpx.Client(base_url="https://api.razorpay.test/v1", transport=httpx.MockTransport(handler))
    return RazorpayClient(key_id, key_secret, http=http)


def test_create_remote_order_posts_amount_in_paise():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"id": "order_abc", "amount": 49999, "currency": "INR"})

    result = _client(handler).create_remote_order(499.99, "rcpt_1")

    assert result["id"] == "order_abc"
    request = seen[0]
    assert request.url.path == "/v1/orders"
    assert json.loads(request.content) == {"amount": 49999, "currency": "INR", "receipt": "rcpt_1"}
    expected_auth = base64.b64encode(b"rzp_key:" + SECRET.encode()).decode()
    assert request.headers["Authorization"] == f"Basic {expected_auth}"


def test_gateway_error_is_raised():
    client = _client(lambda request: httpx.Response(400, json={"error": {"description": "bad amount"}}))
    with pytest.raises(PaymentGatewayError):
        client.create_remote_order(10, "rcpt_1")


def test_unreachable_gateway():
    def handler(request):
        raise httpx.ConnectError("down", request=request)

    with pytest.raises(PaymentGatewayError):
        _client(handler).create_remote_order(10, "rcpt_1")


def test_missing_keys_refuse_remote_order():
    client = _client(lambda request: httpx.Response(200, json={}), key_id=None)
    with pytest.raises(PaymentConfigError):
        client.create_remote_order(10, "rcpt_1")


def test_receipt_format():
    assert new_receipt().startswith("rcpt_")
