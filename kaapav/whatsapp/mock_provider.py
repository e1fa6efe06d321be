from __future__ import annotations

import uuid
from typing import Any

from kaapav.core.errors import WhatsAppSendError


class MockWhatsAppTransport:
    """Records payloads instead of calling the Graph API.

    Used in dev (``WHATSAPP_PROVIDER=mock``) and by the tests, which inspect
    ``sent`` to assert on what a customer would have received.
    """

    def __init__(self, *, failing_phones: set[str] | None = None) -> None:
        self.sent: list[dict[str, Any]] = []
        self.read_receipts: list[str] = []
        self.failing_phones = set(failing_phones or ())

    async def post(self, payload: dict[str, Any]) -> dict[str, Any]:
        if payload.get("to") in self.failing_phones:
            raise WhatsAppSendError(400, '{"error": {"code": 131026, "message": "Recipient not on WhatsApp"}}')
        self.sent.append(payload)
        return {"messages": [{"id": f"mock-{uuid.uuid4().hex[:10]}"}]}

    async def mark_read(self, message_id: str) -> None:
        self.read_receipts.append(message_id)

    def sent_to(self, phone: str) -> list[dict[str, Any]]:
        return [payload for payload in self.sent if payload.get("to") == phone]

    def reset(self) -> None:
        self.sent.clear()
        self.read_receipts.clear()
