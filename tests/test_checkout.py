from unittest.mock import MagicMock, patch

import pytest

from trailposter.checkout import (
    STRIPE_SESSIONS_URL,
    CheckoutService,
    StripeGateway,
    form_encode,
    session_params,
    validate_checkout_request,
)
from trailposter.design import get_size
from trailposter.errors import CheckoutValidationError

IMAGE_URL = "https://blob.example.com/posters/1.png"


class FakeGateway:
    def __init__(self, url="https://checkout.example.com/c/cs_123", error=None):
        self.url = url
        self.error = error
        self.calls = []

    def create_checkout_session(self, params):
        self.calls.append(params)
        if self.error is not None:
            raise self.error
        return self.url


class TestValidation:
    def test_valid_request(self):
        size, url = validate_checkout_request({"sizeKey": "18x24", "imageUrl": IMAGE_URL})
        assert size.price_cents == 3900
        assert url == IMAGE_URL

    @pytest.mark.parametrize(
        "payload, message",
        [
            (None, "Invalid request"),
            ("18x24", "Invalid request"),
            ({"sizeKey": "99x99", "imageUrl": IMAGE_URL}, "Invalid size"),
            ({"imageUrl": IMAGE_URL}, "Invalid size"),
            ({"sizeKey": 18, "imageUrl": IMAGE_URL}, "Invalid size"),
            ({"sizeKey": "18x24", "imageUrl": "http://blob.example.com/p.png"}, "Invalid image URL"),
            ({"sizeKey": "18x24"}, "Invalid image URL"),
        ],
    )
    def test_rejections(self, payload, message):
        with pytest.raises(CheckoutValidationError) as exc:
            validate_checkout_request(payload)
        assert exc.value.message == message
        assert exc.value.status == 400


def test_session_params_carry_fulfillment_metadata():
    params = session_params(get_size("24x36"), IMAGE_URL, "https://trail.example.com")
    assert params["metadata"] == {
        "sizeKey": "24x36",
        "imageUrl": IMAGE_URL,
        "printfulVariantId": "2",
    }
    item = params["line_items"][0]
    assert item["price_data"]["unit_amount"] == 4900
    assert item["quantity"] == 1
    assert params["shipping_address_collection"] == {"allowed_countries": ["US"]}
    assert params["success_url"] == (
        "https://trail.example.com/success?session_id={CHECKOUT_SESSION_ID}"
    )
    assert params["cancel_url"] == "https://trail.example.com/preview"


def test_form_encode_nests_with_brackets():
    fields = form_encode({"a": {"b": [{"c": 1}, "x"]}, "mode": "payment"})
    assert fields == [("a[b][0][c]", "1"), ("a[b][1]", "x"), ("mode", "payment")]


class TestCheckoutService:
    def test_accepts_known_size(self):
        gateway = FakeGateway()
        resp = CheckoutService(gateway, "https://trail.example.com/").create_session(
            {"sizeKey": "18x24", "imageUrl": IMAGE_URL}
        )
        assert resp.status == 200
        assert resp.body == {"url": "https://checkout.example.com/c/cs_123"}
        assert gateway.calls[0]["cancel_url"] == "https://trail.example.com/preview"

    def test_unknown_size_is_400(self):
        gateway = FakeGateway()
        resp = CheckoutService(gateway, "https://x").create_session(
            {"sizeKey": "99x99", "imageUrl": IMAGE_URL}
        )
        assert (resp.status, resp.body) == (400, {"error": "Invalid size"})
        assert gateway.calls == []

    def test_plain_http_image_is_400(self):
        resp = CheckoutService(FakeGateway(), "https://x").create_session(
            {"sizeKey": "18x24", "imageUrl": "http://blob.example.com/p.png"}
        )
        assert (resp.status, resp.body) == (400, {"error": "Invalid image URL"})

    def test_gateway_failure_is_500(self):
        service = CheckoutService(FakeGateway(error=RuntimeError("boom")), "https://x")
        resp = service.create_session({"sizeKey": "12x18", "imageUrl": IMAGE_URL})
        assert (resp.status, resp.body) == (500, {"error": "Failed to create checkout session"})


@patch("trailposter.checkout.requests.post")
def test_stripe_gateway_posts_form(mock_post):
    mock_response = MagicMock()
    mock_response.json.return_value = {"id": "cs_1", "url": "https://checkout.stripe.com/c/cs_1"}
    mock_post.return_value = mock_response

    url = StripeGateway("sk_test").create_checkout_session({"mode": "payment"})

    assert url == "https://checkout.stripe.com/c/cs_1"
    args, kwargs = mock_post.call_args
    assert args[0] == STRIPE_SESSIONS_URL
    assert kwargs["data"] == [("mode", "payment")]
    assert kwargs["auth"] == ("sk_test", "")
