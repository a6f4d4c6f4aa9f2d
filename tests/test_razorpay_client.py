import base64
import json

import httpx
import pytest

from app.core.errors import GatewayError
from app.integrations.razorpay_client import RazorpayClient


def _client(handler):
    return RazorpayClient(
        key_id="rzp_test_key",
        key_secret="shh",
        base_url="https://api.razorpay.test/v1/",
        transport=httpx.MockTransport(handler),
    )


async def test_create_order_request():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "order_1", "amount": 71600, "currency": "INR"})

    order = await _client(handler).create_order(
        amount=71600,
        currency="INR",
        receipt="receipt_5KM_1",
        notes={"registrationId": "abc", "finalAmount": 716, "couponCode": None},
    )

    assert order["id"] == "order_1"
    assert seen["method"] == "POST"
    assert seen["url"] == "https://api.razorpay.test/v1/orders"
    assert seen["auth"] == "Basic " + base64.b64encode(b"rzp_test_key:shh").decode()
    assert seen["body"] == {
        "amount": 71600,
        "currency": "INR",
        "receipt": "receipt_5KM_1",
        "notes": {"registrationId": "abc", "finalAmount": "716", "couponCode": ""},
    }


async def test_fetch_order():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "GET"
        assert request.url.path == "/v1/orders/order_42"
        return httpx.Response(200, json={"id": "order_42", "notes": {"registrationId": "abc"}})

    order = await _client(handler).fetch_order("order_42")
    assert order["notes"]["registrationId"] == "abc"


async def test_error_status_becomes_gateway_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": {"code": "BAD_REQUEST_ERROR", "description": "amount too low"}})

    with pytest.raises(GatewayError) as exc:
        await _client(handler).create_order(amount=1, currency="INR", receipt="r", notes={})
    assert exc.value.status_code == 502


async def test_network_error_becomes_gateway_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(GatewayError):
        await _client(handler).fetch_order("order_1")


async def test_unreadable_body_becomes_gateway_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>upstream maintenance</html>")

    with pytest.raises(GatewayError) as exc:
        await _client(handler).create_order(amount=71600, currency="INR", receipt="r", notes={})
    assert exc.value.status_code == 502
