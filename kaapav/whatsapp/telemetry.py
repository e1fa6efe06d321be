from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from kaapav.core.config import N8N_WEBHOOK_URL, SHEETS_WEBHOOK_URL

logger = logging.getLogger(__name__)


class TelemetrySink:
    """Optional spreadsheet and n8n mirrors of message traffic.

    Every method swallows its own failures; telemetry must never affect the
    customer facing reply.
    """

    def __init__(
        self,
        *,
        sheets_url: str | None = None,
        n8n_url: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.sheets_url = SHEETS_WEBHOOK_URL if sheets_url is None else sheets_url
        self.n8n_url = N8N_WEBHOOK_URL if n8n_url is None else n8n_url
        self._client = client

    @property
    def enabled(self) -> bool:
        return bool(self.sheets_url or self.n8n_url)

    async def _post(self, url: str, body: dict[str, Any]) -> None:
        if self._client is not None:
            response = await self._client.post(url, json=body)
        else:
            async with httpx.AsyncClient(timeout=5.0) as client:
                response = await client.post(url, json=body)
        response.raise_for_status()

    async def append_row(self, values: list[Any]) -> None:
        if not self.sheets_url:
            return
        try:
            await self._post(self.sheets_url, {"values": [values]})
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Sheets append failed: %s", exc)

    async def notify(self, event: str, payload: dict[str, Any]) -> None:
        if not self.n8n_url:
            return
        try:
            await self._post(self.n8n_url, {"event": event, "payload": payload, "ts": int(time.time() * 1000)})
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("n8n notify failed: %s", exc)
