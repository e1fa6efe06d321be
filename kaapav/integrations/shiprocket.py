from __future__ import annotations

import logging
from typing import Any

import httpx

from kaapav.core.errors import ConfigurationError, ProviderError

logger = logging.getLogger(__name__)

SHIPROCKET_BASE_URL = "https://apiv2.shiprocket.in/v1/external"


class ShiprocketClient:
    """Shiprocket external API. Uses a static token or logs in once per client."""

    def __init__(
        self,
        *,
        token: str | None = None,
        email: str | None = None,
        password: str | None = None,
        client: httpx.AsyncClient | None = None,
        base_url: str = SHIPROCKET_BASE_URL,
        timeout: float = 20.0,
    ) -> None:
        self._token = token or None
        self.email = email or ""
        self.password = password or ""
        self.base_url = base_url.rstrip("/")
        self._client = client
        self._timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self._token or (self.email and self.password))

    async def _send(self, method: str, path: str, *, headers: dict[str, str], **kwargs) -> httpx.Response:
        url = f"{self.base_url}{path}"
        if self._client is not None:
            return await self._client.request(method, url, headers=headers, **kwargs)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.request(method, url, headers=headers, **kwargs)

    async def token(self) -> str:
        if self._token:
            return self._token
        if not (self.email and self.password):
            raise ConfigurationError("Shiprocket credentials are not configured")
        response = await self._send(
            "POST",
            "/auth/login",
            headers={"Content-Type": "application/json"},
            json={"email": self.email, "password": self.password},
        )
        if response.status_code >= 400:
            raise ProviderError("shiprocket", response.status_code, response.text)
        token = (response.json() or {}).get("token")
        if not token:
            raise ProviderError("shiprocket", response.status_code, "login returned no token")
        self._token = token
        return token

    async def _request(self, method: str, path: str, **kwargs) -> dict[str, Any]:
        token = await self.token()
        response = await self._send(method, path, headers={"Authorization": f"Bearer {token}"}, **kwargs)
        if response.status_code >= 400:
            raise ProviderError("shiprocket", response.status_code, response.text)
        try:
            return response.json()
        except ValueError:
            raise ProviderError("shiprocket", response.status_code, response.text)

    async def create_order(self, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", "/orders/create/adhoc", json=payload)

    async def assign_awb(self, shipment_id: str, courier_id: int | None = None) -> dict[str, Any]:
        body: dict[str, Any] = {"shipment_id": shipment_id}
        if courier_id is not None:
            body["courier_id"] = courier_id
        return await self._request("POST", "/courier/assign/awb", json=body)

    async def track_awb(self, awb: str) -> dict[str, Any]:
        return await self._request("GET", f"/courier/track/awb/{awb}")

    async def serviceability(self, pickup_pincode: str, delivery_pincode: str, *, weight: float = 0.5) -> dict[str, Any]:
        params = {
            "pickup_postcode": pickup_pincode,
            "delivery_postcode": delivery_pincode,
            "weight": weight,
            "cod": 0,
        }
        return await self._request("GET", "/courier/serviceability/", params=params)

    async def cancel_awbs(self, awbs: list[str]) -> dict[str, Any]:
        return await self._request("POST", "/orders/cancel/shipment/awbs", json={"awbs": awbs})
