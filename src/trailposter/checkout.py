"""checkout.py

Checkout contract: validate ``{sizeKey, imageUrl}`` against the size
catalog and open a hosted payment session for the poster.

Responses are returned as :class:`CheckoutResponse` (status + JSON body)
so any web framework can serve them unchanged: 200 ``{url}``, 400
``{error}`` on validation failure, 500 on anything unexpected.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Protocol, Tuple

import requests

from .design import get_size
from .errors import CheckoutValidationError
from .models import PosterSizeOption

logger = logging.getLogger(__name__)

STRIPE_SESSIONS_URL = "https://api.stripe.com/v1/checkout/sessions"


@dataclass(frozen=True)
class CheckoutResponse:
    status: int
    body: Dict[str, Any]


def validate_checkout_request(payload: Any) -> Tuple[PosterSizeOption, str]:
    """Return the catalog size and image URL, or raise CheckoutValidationError."""
    if not isinstance(payload, Mapping):
        raise CheckoutValidationError("Invalid request")
    size_key = payload.get("sizeKey")
    size = get_size(size_key) if isinstance(size_key, str) else None
    if size is None:
        raise CheckoutValidationError("Invalid size")
    image_url = payload.get("imageUrl")
    if not isinstance(image_url, str) or not image_url.startswith("https://"):
        raise CheckoutValidationError("Invalid image URL")
    return size, image_url


def session_params(size: PosterSizeOption, image_url: str, base_url: str) -> Dict[str, Any]:
    """Payment-session parameters; metadata drives fulfillment later."""
    return {
        "mode": "payment",
        "line_items": [
            {
                "price_data": {
                    "currency": "usd",
                    "unit_amount": size.price_cents,
                    "product_data": {
                        "name": f"Trail Map Poster — {size.label}",
                        "description": "Enhanced Matte Paper Poster",
                        "images": [image_url],
                    },
                },
                "quantity": 1,
            }
        ],
        "shipping_address_collection": {"allowed_countries": ["US"]},
        "metadata": {
            "sizeKey": size.key,
            "imageUrl": image_url,
            "printfulVariantId": str(size.external_variant_id),
        },
        "success_url": f"{base_url}/success?session_id={{CHECKOUT_SESSION_ID}}",
        "cancel_url": f"{base_url}/preview",
    }


def form_encode(params: Mapping[str, Any], prefix: str = "") -> List[Tuple[str, str]]:
    """Flatten nested dicts/lists into bracketed form fields (``a[0][b]=c``)."""
    out: List[Tuple[str, str]] = []
    for key, value in params.items():
        name = f"{prefix}[{key}]" if prefix else str(key)
        if isinstance(value, Mapping):
            out.extend(form_encode(value, name))
        elif isinstance(value, (list, tuple)):
            for i, item in enumerate(value):
                item_name = f"{name}[{i}]"
                if isinstance(item, Mapping):
                    out.extend(form_encode(item, item_name))
                else:
                    out.append((item_name, str(item)))
        else:
            out.append((name, str(value)))
    return out


class PaymentGateway(Protocol):
    def create_checkout_session(self, params: Dict[str, Any]) -> str:
        """Create a hosted checkout session and return its redirect URL."""
        ...


class StripeGateway:
    def __init__(self, secret_key: str, timeout_s: float = 30.0):
        self.secret_key = secret_key
        self.timeout_s = timeout_s

    def create_checkout_session(self, params: Dict[str, Any]) -> str:
        resp = requests.post(
            STRIPE_SESSIONS_URL,
            data=form_encode(params),
            auth=(self.secret_key, ""),
            timeout=self.timeout_s,
        )
        resp.raise_for_status()
        return resp.json()["url"]


class CheckoutService:
    def __init__(self, gateway: PaymentGateway, base_url: str):
        self.gateway = gateway
        self.base_url = base_url.rstrip("/")

    def create_session(self, payload: Any) -> CheckoutResponse:
        try:
            size, image_url = validate_checkout_request(payload)
        except CheckoutValidationError as e:
            return CheckoutResponse(e.status, {"error": e.message})

        try:
            url = self.gateway.create_checkout_session(
                session_params(size, image_url, self.base_url)
            )
        except Exception:
            logger.exception("Checkout error")
            return CheckoutResponse(500, {"error": "Failed to create checkout session"})
        return CheckoutResponse(200, {"url": url})
