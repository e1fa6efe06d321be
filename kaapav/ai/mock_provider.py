from __future__ import annotations

import asyncio


class MockAIProvider:
    """Canned replies for tests and local runs without an API key."""

    name = "mock"

    def __init__(self, reply: str = "", *, delay: float = 0.0, error: Exception | None = None) -> None:
        self.reply = reply
        self.delay = delay
        self.error = error
        self.calls: list[list[dict[str, str]]] = []

    @property
    def configured(self) -> bool:
        return True

    async def complete(self, messages, *, max_tokens: int = 300, temperature: float = 0.7) -> str:
        self.calls.append(list(messages))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.reply
