from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

import httpx

from kaapav.core.config import GRAPH_API_VERSION, WA_PHONE_ID, WA_TOKEN
from kaapav.core.errors import ConfigurationError, WhatsAppSendError

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3


def _backoff_seconds(attempt: int) -> float:
    # 1s, 2s, 4s... capped at 8s
    sec = 1.0 * (2 ** max(0, attempt - 1))
    return min(sec, 8.0)


class CloudWhatsAppTransport:
    """Graph API transport with bounded retries on transient failures."""

    def __init__(
        self,
        *,
        phone_id: str | None = None,
        token: str | None = None,
        api_version: str | None = None,
        client: httpx.AsyncClient | None = None,
        max_attempts: int = MAX_ATTEMPTS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.phone_id = (phone_id if phone_id is not None else WA_PHONE_ID).strip()
        self.token = (token if token is not None else WA_TOKEN).strip()
        self.api_version = api_version or GRAPH_API_VERSION
        self.max_attempts = max_attempts
        self._client = client
        self._sleep = sleep

    @property
    def url(self) -> str:
        return f"https://graph.facebook.com/{self.api_version}/{self.phone_id}/messages"

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}", "Content-Type": "application/json"}

    def _require_config(self) -> None:
        if not self.token or not self.phone_id:
            raise ConfigurationError(
                "WhatsApp credentials missing",
                details={"phone_id": self.phone_id, "token_length": len(self.token)},
            )

    async def _post_once(self, payload: dict[str, Any]) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(self.url, headers=self._headers(), json=payload)
        async with httpx.AsyncClient(timeout=20.0) as client:
            return await client.post(self.url, headers=self._headers(), json=payload)

    async def post(self, payload: dict[str, Any]) -> dict[str, Any]:
        self._require_config()

        for attempt in range(1, self.max_attempts + 1):
            try:
                response = await self._post_once(payload)
            except (httpx.TimeoutException, httpx.NetworkError) as exc:
                if attempt < self.max_attempts:
                    logger.warning("WhatsApp network error, retrying: %s", exc, extra={"event": "wa_retry"})
                    await self._sleep(_backoff_seconds(attempt))
                    continue
                raise

            body_text = response.text
            if 200 <= response.status_code < 300:
                try:
                    return response.json()
                except ValueError:
                    return {"ok": True, "raw": body_text}

            error = WhatsAppSendError(response.status_code, body_text)
            if error.transient and attempt < self.max_attempts:
                logger.warning(
                    "WhatsApp transient error %s (attempt %s/%s)",
                    response.status_code,
                    attempt,
                    self.max_attempts,
                    extra={"event": "wa_retry"},
                )
                await self._sleep(_backoff_seconds(attempt))
                continue
            raise error

        raise WhatsAppSendError(0, "retries exhausted")

    async def mark_read(self, message_id: str) -> None:
        self._require_config()
        payload = {"messaging_product": "whatsapp", "status": "read", "message_id": message_id}
        response = await self._post_once(payload)
        if response.status_code >= 400:
            raise WhatsAppSendError(response.status_code, response.text)
