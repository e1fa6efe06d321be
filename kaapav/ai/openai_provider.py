from __future__ import annotations

import logging

import httpx

from kaapav.core.errors import ConfigurationError, ProviderError

logger = logging.getLogger(__name__)

OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"


class OpenAIProvider:
    name = "openai"

    def __init__(
        self,
        api_key: str | None,
        *,
        model: str = "gpt-3.5-turbo",
        client: httpx.AsyncClient | None = None,
        url: str = OPENAI_CHAT_URL,
        timeout: float = 15.0,
    ) -> None:
        self.api_key = api_key or ""
        self.model = model
        self.url = url
        self._client = client
        self._timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def complete(self, messages, *, max_tokens: int = 300, temperature: float = 0.7) -> str:
        if not self.configured:
            raise ConfigurationError("OPENAI_API_KEY is not configured")
        body = {
            "model": self.model,
            "messages": list(messages),
            "max_tokens": max_tokens,
            "temperature": temperature,
            "presence_penalty": 0.1,
            "frequency_penalty": 0.1,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}
        if self._client is not None:
            response = await self._client.post(self.url, json=body, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(self.url, json=body, headers=headers)
        if response.status_code >= 400:
            raise ProviderError("openai", response.status_code, response.text)
        data = response.json()
        choices = data.get("choices") or [{}]
        return ((choices[0].get("message") or {}).get("content") or "").strip()
