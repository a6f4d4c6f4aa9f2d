from __future__ import annotations

from typing import Any

import httpx
import structlog

from app.core.config import settings
from app.core.errors import GatewayError

logger = structlog.get_logger().bind(component="razorpay_client")


class RazorpayClient:
    """Thin async client over the Razorpay Orders API.

    Order notes are opaque string key/values; they carry everything needed to
    reconcile a payment even if the local write after order creation is lost.
    """

    def __init__(
        self,
        key_id: str | None = None,
        key_secret: str | None = None,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.key_id = key_id if key_id is not None else settings.RAZORPAY_KEY_ID
        self.key_secret = key_secret if key_secret is not None else settings.RAZORPAY_KEY_SECRET
        self.base_url = (base_url or settings.RAZORPAY_API_BASE_URL).rstrip("/")
        self.transport = transport
        self.timeout = 15

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            auth=(self.key_id, self.key_secret),
            timeout=self.timeout,
            transport=self.transport,
        )

    async def _request(self, method: str, path: str, **kwargs) -> dict[str, Any]:
        try:
            async with self._client() as client:
                r = await client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error("gateway_unreachable", method=method, path=path, error=str(e))
            raise GatewayError("Payment gateway is unreachable") from e

        if r.status_code >= 400:
            logger.error("gateway_error", method=method, path=path, status=r.status_code, body=r.text[:500])
            raise GatewayError(f"Payment gateway error ({r.status_code})")

        try:
            return r.json()
        except ValueError as e:
            logger.error("gateway_bad_response", method=method, path=path, status=r.status_code, body=r.text[:500])
            raise GatewayError("Payment gateway returned an unreadable response") from e

    async def create_order(
        self,
        *,
        amount: int,
        currency: str,
        receipt: str,
        notes: dict[str, Any],
    ) -> dict[str, Any]:
        payload = {
            "amount": amount,
            "currency": currency,
            "receipt": receipt,
            "notes": {k: "" if v is None else str(v) for k, v in notes.items()},
        }
        return await self._request("POST", "/orders", json=payload)

    async def fetch_order(self, order_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/orders/{order_id}")
