from __future__ import annotations

from typing import Protocol


class AIProvider(Protocol):
    name: str

    @property
    def configured(self) -> bool:
        ...

    async def complete(self, messages: list[dict[str, str]], *, max_tokens: int = 300, temperature: float = 0.7) -> str:
        """Chat completion text for ``messages`` (OpenAI message format)."""
        ...
