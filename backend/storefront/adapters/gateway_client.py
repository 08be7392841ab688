import hashlib
import hmac
import logging
import time
from typing import Dict, Optional
from uuid import uuid4

import requests

log = logging.getLogger(__name__)


class GatewayError(Exception):
    """The remote gateway could not create or report on a payment."""


def sign_payment(secret: str, gateway_order_id: str, payment_id: str) -> str:
    """Signature the gateway attaches to a checkout callback: HMAC-SHA256 of "order|payment"."""
    message = f"{gateway_order_id}|{payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_signature(secret: str, gateway_order_id: str, payment_id: str, signature: str) -> bool:
    expected = sign_payment(secret, gateway_order_id, payment_id)
    return hmac.compare_digest(expected, (signature or "").strip())


class RazorpayGatewayClient:
    """Creates remote orders through the gateway's REST API (basic auth with key id/secret)."""

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        base_url: str = "https://api.razorpay.com/v1",
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.key_id = key_id
        self.key_secret = key_secret
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.http = session or requests.Session()
        self.http.auth = (key_id, key_secret)

    def create_order(
        self, amount_cents: int, currency: str, receipt: str, notes: Optional[Dict] = None
    ) -> Dict:
        payload = {
            "amount": amount_cents,
            "currency": currency,
            "receipt": receipt,
            "notes": notes or {},
        }
        try:
            resp = self.http.post(f"{self.base_url}/orders", json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise GatewayError(f"Failed to reach payment provider: {e}") from e
        if resp.status_code >= 400:
            log.warning("gateway rejected order create: status=%s body=%s", resp.status_code, resp.text[:500])
            raise GatewayError("Failed to create order with payment provider")
        data = resp.json()
        if not data.get("id"):
            raise GatewayError("Invalid response from payment provider")
        return data

    def health_check(self) -> bool:
        return bool(self.key_id and self.key_secret)


class MockGatewayClient:
    """
    In-process stand-in for the gateway, used in development and tests.
    Pass fail=True to simulate an unreachable provider.
    """

    def __init__(self, key_id: str = "rzp_test_mock", delay_ms: int = 0, fail: bool = False):
        self.key_id = key_id
        self.delay_seconds = delay_ms / 1000.0
        self.fail = fail
        self.created = []

    def create_order(
        self, amount_cents: int, currency: str, receipt: str, notes: Optional[Dict] = None
    ) -> Dict:
        time.sleep(self.delay_seconds)
        if self.fail:
            raise GatewayError("Simulated gateway outage")
        order = {
            "id": f"order_{uuid4().hex[:14]}",
            "amount": amount_cents,
            "currency": currency,
            "receipt": receipt,
            "status": "created",
            "notes": notes or {},
        }
        self.created.append(order)
        return order

    def health_check(self) -> bool:
        return not self.fail


def build_gateway_client(settings):
    if settings.GATEWAY_BACKEND == "razorpay":
        return RazorpayGatewayClient(
            key_id=settings.GATEWAY_KEY_ID,
            key_secret=settings.GATEWAY_KEY_SECRET,
            base_url=settings.GATEWAY_BASE_URL,
            timeout=settings.GATEWAY_TIMEOUT_SECONDS,
        )
    return MockGatewayClient(key_id=settings.GATEWAY_KEY_ID)
