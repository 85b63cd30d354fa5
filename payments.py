"""
Razorpay integration: callback signature verification and remote order creation.
"""
import hashlib
import hmac
import logging
import time
from typing import Any, Dict, Optional

import httpx

from errors import PaymentConfigError, PaymentGatewayError

logger = logging.getLogger(__name__)

RAZORPAY_API_URL = "https://api.razorpay.com/v1"


def expected_signature(gateway_order_id: str, gateway_payment_id: str, secret: str) -> str:
    message = f"{gateway_order_id}|{gateway_payment_id}".encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def verify_signature(
    gateway_order_id: str,
    gateway_payment_id: str,
    signature: str,
    secret: Optional[str],
) -> bool:
    """Check a payment callback signature.

    Returns False on mismatch. Raises PaymentConfigError only when no secret
    is configured. Marks nothing as paid.
    """
    if not secret:
        raise PaymentConfigError("Razorpay secret is not configured")
    generated = expected_signature(gateway_order_id, gateway_payment_id, secret)
    return hmac.compare_digest(generated.encode(), (signature or "").encode())


def new_receipt() -> str:
    return f"rcpt_{int(time.time() * 1000)}"


class RazorpayClient:
    def __init__(
        self,
        key_id: Optional[str],
        key_secret: Optional[str],
        base_url: str = RAZORPAY_API_URL,
        http: Optional[httpx.Client] = None,
        currency: str = "INR",
    ):
        self.key_id = key_id
        self.key_secret = key_secret
        self.currency = currency
        self._http = http or httpx.Client(base_url=base_url, timeout=10.0)

    @property
    def configured(self) -> bool:
        return bool(self.key_id and self.key_secret)

    def verify(self, gateway_order_id: str, gateway_payment_id: str, signature: str) -> bool:
        return verify_signature(gateway_order_id, gateway_payment_id, signature, self.key_secret)

    def create_remote_order(self, amount: float, receipt: str) -> Dict[str, Any]:
        """Create a Razorpay order for ``amount`` rupees; the gateway works in paise."""
        if not self.configured:
            raise PaymentConfigError("Razorpay keys are not configured")
        body = {"amount": int(round(float(amount) * 100)), "currency": self.currency, "receipt": receipt}
        try:
            response = self._http.post("/orders", json=body, auth=(self.key_id, self.key_secret))
        except httpx.HTTPError as e:
            raise PaymentGatewayError(f"Razorpay unreachable: {e}") from e
        if response.is_error:
            logger.error("Razorpay order creation failed: %s %s", response.status_code, response.text[:200])
            raise PaymentGatewayError(f"Failed to create Razorpay order: {response.status_code}")
        data = response.json()
        logger.info("Created Razorpay order %s for receipt %s", data.get("id"), receipt)
        return data

    def close(self) -> None:
        self._http.close()
