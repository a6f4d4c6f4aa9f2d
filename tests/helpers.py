import json
from datetime import datetime, timedelta, timezone

import httpx
import jwt

from app.core.config import settings
from app.core.security import payment_signature, webhook_signature
from app.integrations.razorpay_client import RazorpayClient


class FakeRazorpay:
    """In-memory Orders API behind httpx.MockTransport."""

    def __init__(self):
        self.orders: dict[str, dict] = {}
        self.requests: list[httpx.Request] = []
        self.fail_create = False
        self.fail_fetch = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.method == "POST" and path.endswith("/orders"):
            if self.fail_create:
                return httpx.Response(500, json={"error": {"code": "SERVER_ERROR"}})
            body = json.loads(request.content)
            order_id = f"order_{len(self.orders) + 1:06d}"
            order = {
                "id": order_id,
                "entity": "order",
                "amount": body["amount"],
                "amount_paid": 0,
                "currency": body["currency"],
                "receipt": body["receipt"],
                "status": "created",
                "notes": body["notes"],
            }
            self.orders[order_id] = order
            return httpx.Response(200, json=order)

        if request.method == "GET" and "/orders/" in path:
            if self.fail_fetch:
                return httpx.Response(503, json={"error": {"code": "SERVER_ERROR"}})
            order = self.orders.get(path.rsplit("/", 1)[-1])
            if order is None:
                return httpx.Response(404, json={"error": {"code": "BAD_REQUEST_ERROR"}})
            return httpx.Response(200, json=order)

        return httpx.Response(404, json={"error": {"code": "NOT_FOUND"}})

    def client(self) -> RazorpayClient:
        return RazorpayClient(
            key_id="rzp_test_key",
            key_secret=settings.RAZORPAY_KEY_SECRET,
            base_url="https://api.razorpay.test/v1",
            transport=httpx.MockTransport(self.handler),
        )


class FakeMailer:
    def __init__(self):
        self.sent: list[dict] = []
        self.fail = False

    async def send(self, *, to, subject, html, attachments=None):
        if self.fail:
            raise ConnectionError("smtp unavailable")
        self.sent.append({"to": to, "subject": subject, "html": html, "attachments": attachments or []})
        return f"<msg-{len(self.sent)}@test>"


class RecordingNotifier:
    def __init__(self):
        self.calls: list[tuple[str, str]] = []

    def schedule(self, registration_id: str, source: str) -> None:
        self.calls.append((registration_id, source))


def sign_payment(order_id: str, payment_id: str) -> str:
    return payment_signature(order_id, payment_id, settings.RAZORPAY_KEY_SECRET)


def sign_webhook(raw_body: bytes) -> str:
    return webhook_signature(raw_body, settings.RAZORPAY_WEBHOOK_SECRET)


def webhook_body(
    event: str,
    *,
    order_id: str,
    payment_id: str,
    notes: dict | None = None,
    amount: int = 0,
    **payment_fields,
) -> bytes:
    payment = {
        "id": payment_id,
        "entity": "payment",
        "order_id": order_id,
        "amount": amount,
        "currency": "INR",
        "status": "failed" if event == "payment.failed" else "captured",
        # Razorpay sends [] for "no notes"
        "notes": notes if notes is not None else [],
        **payment_fields,
    }
    return json.dumps({"event": event, "payload": {"payment": {"entity": payment}}}).encode()


def admin_token(*, subject: str, role: str, minutes: int = 30) -> str:
    """Bearer token shaped like the ones the admin service issues."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": subject,
        "role": role,
        "type": "access",
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=minutes)).timestamp()),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALG)
