from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Any

import httpx

from kaapav.core.errors import ConfigurationError, ProviderError

logger = logging.getLogger(__name__)

RAZORPAY_BASE_URL = "https://api.razorpay.com/v1"


def verify_signature(body: bytes, signature: str | None, secret: str | None) -> bool:
    """HMAC-SHA256 check used by the payment webhook."""
    if not secret or not signature:
        return False
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature.strip())


class RazorpayClient:
    """Thin wrapper over the Razorpay REST API (Basic auth, amounts in paise)."""

    def __init__(
        self,
        key: str | None,
        secret: str | None,
        *,
        client: httpx.AsyncClient | None = None,
        base_url: str = RAZORPAY_BASE_URL,
        timeout: float = 20.0,
    ) -> None:
        self.key = key or ""
        self.secret = secret or ""
        self.base_url = base_url.rstrip("/")
        self._client = client
        self._timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.key and self.secret)

    async def _request(self, method: str, path: str, *, json: dict[str, Any] | None = None) -> dict[str, Any]:
        if not self.configured:
            raise ConfigurationError("Razorpay credentials are not configured")
        url = f"{self.base_url}{path}"
        auth = httpx.BasicAuth(self.key, self.secret)
        if self._client is not None:
            response = await self._client.request(method, url, json=json, auth=auth)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.request(method, url, json=json, auth=auth)
        if response.status_code >= 400:
            raise ProviderError("razorpay", response.status_code, response.text)
        try:
            data = response.json()
        except ValueError:
            raise ProviderError("razorpay", response.status_code, response.text)
        if isinstance(data, dict) and data.get("error"):
            raise ProviderError("razorpay", response.status_code, response.text)
        return data

    async def create_payment_link(self, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", "/payment_links", json=payload)

    async def fetch_payment(self, payment_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/payments/{payment_id}")

    async def refund(self, payment_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", f"/payments/{payment_id}/refund", json=payload)
