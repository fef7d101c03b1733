"""Thin Paystack client: initialize a transaction, verify it later by reference.

Amounts are exchanged with Paystack in the minor unit (kobo). Every failure,
transport or API level, surfaces as ``GatewayError``; nothing is retried.
"""
import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

import settings
from errors import GatewayError

logger = logging.getLogger(__name__)


class PaystackClient:
    def __init__(self, secret_key: str, base_url: str = settings.PAYSTACK_BASE_URL,
                 timeout: float = settings.PAYSTACK_TIMEOUT, transport: Optional[httpx.BaseTransport] = None):
        self._client = httpx.Client(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers={"Authorization": f"Bearer {secret_key}", "Content-Type": "application/json"},
        )

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error("Paystack %s %s failed: %s", method, path, e)
            raise GatewayError("Could not connect to the payment gateway.")
        try:
            body = response.json()
        except ValueError:
            logger.error("Paystack %s %s returned non-JSON body (status %s)", method, path, response.status_code)
            raise GatewayError("Unreadable response from the payment gateway.")
        if response.is_error or not body.get("status"):
            message = body.get("message") or f"Payment gateway returned status {response.status_code}"
            logger.error("Paystack %s %s rejected: %s", method, path, message)
            raise GatewayError(message)
        return body

    def initialize_transaction(self, email: str, amount: int, metadata: Optional[Dict[str, Any]] = None,
                               callback_url: Optional[str] = None) -> Dict[str, Any]:
        """Start a hosted checkout; returns ``authorization_url``, ``access_code`` and ``reference``."""
        payload: Dict[str, Any] = {"email": email, "amount": amount, "metadata": metadata or {}}
        if callback_url:
            payload["callback_url"] = callback_url
        return self._request("POST", "/transaction/initialize", json=payload)["data"]

    def verify_transaction(self, reference: str) -> Dict[str, Any]:
        """Return the transaction ``data`` (status, amount, metadata, gateway_response...)."""
        return self._request("GET", f"/transaction/verify/{quote(reference, safe='')}")["data"]


_client: Optional[PaystackClient] = None


def get_gateway() -> PaystackClient:
    global _client
    if _client is None:
        if not settings.PAYSTACK_SECRET_KEY:
            logger.warning("PAYSTACK_SECRET_KEY is not set; gateway calls will be rejected")
        _client = PaystackClient(settings.PAYSTACK_SECRET_KEY)
    return _client


def minor_units(amount: float) -> int:
    return int(round(amount * 100))
