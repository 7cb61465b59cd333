"""fulfillment.py

Payment-webhook driven print fulfillment.

Once a checkout completes, payment has already been taken.  Fulfillment
is therefore at-most-once effort: missing metadata, a missing shipping
address or a failing print-vendor API never produce an error response
(that would make the payment provider retry).  Each such case instead
emits a :class:`ReconciliationNeeded` event for manual follow-up.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import requests

from .errors import FulfillmentError, WebhookSignatureError

logger = logging.getLogger(__name__)

PRINTFUL_BASE_URL = "https://api.printful.com"
CHECKOUT_COMPLETED = "checkout.session.completed"
SIGNATURE_TOLERANCE_S = 300


# ------------------------------------------------------------
# Print vendor client
# ------------------------------------------------------------

class PrintfulClient:
    """Minimal Printful REST client (create + confirm order)."""

    def __init__(self, api_key: str, base_url: str = PRINTFUL_BASE_URL, timeout_s: float = 30.0):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s

    def _post(self, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        try:
            resp = requests.post(
                f"{self.base_url}{path}", json=payload, headers=headers, timeout=self.timeout_s
            )
        except requests.RequestException as e:
            raise FulfillmentError(f"Printful request to {path} failed: {e}") from e
        if not resp.ok:
            raise FulfillmentError(f"Printful API error {resp.status_code}: {resp.text}")
        try:
            body = resp.json()
        except ValueError as e:
            raise FulfillmentError(f"Printful reply to {path} is not JSON: {e}") from e
        if not isinstance(body, dict):
            raise FulfillmentError(f"Printful reply to {path} is not an object")
        return body

    def create_order(self, recipient: Dict[str, Any], items: List[Dict[str, Any]]) -> Dict[str, Any]:
        return self._post("/orders", {"recipient": recipient, "items": items})

    def confirm_order(self, order_id: int) -> Dict[str, Any]:
        return self._post(f"/orders/{order_id}/confirm")


# ------------------------------------------------------------
# Signature verification
# ------------------------------------------------------------

def sign_payload(payload: bytes, secret: str, timestamp: int) -> str:
    """``t=<ts>,v1=<hex hmac-sha256 of "<ts>.<payload>">`` header value."""
    signed = f"{timestamp}.".encode() + payload
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def verify_webhook_signature(
    payload: bytes,
    header: Optional[str],
    secret: str,
    tolerance_s: int = SIGNATURE_TOLERANCE_S,
    now: Optional[float] = None,
) -> None:
    """Raise WebhookSignatureError unless *header* signs *payload* recently."""
    if not header:
        raise WebhookSignatureError("Missing signature")
    parts: Dict[str, List[str]] = {}
    for item in header.split(","):
        key, _, value = item.strip().partition("=")
        parts.setdefault(key, []).append(value)
    try:
        timestamp = int(parts["t"][0])
    except (KeyError, ValueError):
        raise WebhookSignatureError("Invalid signature header") from None

    now = time.time() if now is None else now
    if tolerance_s and abs(now - timestamp) > tolerance_s:
        raise WebhookSignatureError("Signature timestamp outside tolerance")

    expected = sign_payload(payload, secret, timestamp).split("v1=", 1)[1]
    if not any(hmac.compare_digest(expected, sig) for sig in parts.get("v1", [])):
        raise WebhookSignatureError("Invalid signature")


# ------------------------------------------------------------
# Webhook handling
# ------------------------------------------------------------

@dataclass(frozen=True)
class ReconciliationNeeded:
    """A paid order that was not (or not fully) handed to the print vendor."""

    session_id: str
    reason: str
    detail: str = ""


EventSink = Callable[[ReconciliationNeeded], None]


def recipient_from_shipping(shipping: Dict[str, Any]) -> Dict[str, Any]:
    address = shipping.get("address") or {}
    recipient = {
        "name": shipping.get("name") or "Customer",
        "address1": address.get("line1") or "",
        "city": address.get("city") or "",
        "state_code": address.get("state") or "",
        "country_code": address.get("country") or "US",
        "zip": address.get("postal_code") or "",
    }
    if address.get("line2"):
        recipient["address2"] = address["line2"]
    return recipient


class FulfillmentWebhook:
    """Turns completed checkout events into confirmed print orders."""

    def __init__(self, client: PrintfulClient, webhook_secret: str,
                 sink: Optional[EventSink] = None):
        self.client = client
        self.webhook_secret = webhook_secret
        self.sink = sink

    def _reconcile(self, session_id: str, reason: str, detail: str = "") -> None:
        event = ReconciliationNeeded(session_id, reason, detail)
        logger.error("Reconciliation needed for session %s: %s %s", session_id, reason, detail)
        if self.sink is not None:
            self.sink(event)

    def handle(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """Process one webhook delivery.

        Raises:
            WebhookSignatureError: The delivery is unsigned or forged; nothing
                is processed.
        """
        try:
            verify_webhook_signature(payload, signature, self.webhook_secret)
        except WebhookSignatureError as e:
            logger.error("Webhook signature verification failed: %s", e)
            raise

        event = json.loads(payload)
        if event.get("type") == CHECKOUT_COMPLETED:
            self.fulfill(event.get("data", {}).get("object", {}))
        return {"received": True}

    def fulfill(self, session: Dict[str, Any]) -> Optional[int]:
        """Create and confirm the vendor order; returns its id when confirmed."""
        session_id = session.get("id", "")
        metadata = session.get("metadata") or {}
        if not metadata.get("imageUrl") or not metadata.get("printfulVariantId"):
            self._reconcile(session_id, "missing_metadata")
            return None
        try:
            variant_id = int(metadata["printfulVariantId"])
        except ValueError:
            self._reconcile(session_id, "missing_metadata", "bad variant id")
            return None

        shipping = (session.get("collected_information") or {}).get("shipping_details") or {}
        if not shipping.get("address"):
            self._reconcile(session_id, "missing_shipping_address")
            return None

        items = [
            {
                "variant_id": variant_id,
                "quantity": 1,
                "files": [{"type": "default", "url": metadata["imageUrl"]}],
            }
        ]
        try:
            order = self.client.create_order(recipient_from_shipping(shipping), items)
            result = order.get("result")
            if not isinstance(result, dict) or not result.get("id"):
                raise FulfillmentError(f"Printful order reply has no order id: {order!r}")
            order_id = result["id"]
            self.client.confirm_order(order_id)
            logger.info("Printful order confirmed: %s", order_id)
            return order_id
        except FulfillmentError as e:
            self._reconcile(session_id, "vendor_order_failed", str(e))
            return None
