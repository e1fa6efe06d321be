from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Protocol


@dataclass
class WhatsAppSendResult:
    status: str
    provider_message_id: str | None = None
    error: str | None = None
    response_payload: dict[str, Any] | None = None


class WhatsAppTransport(Protocol):
    async def post(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Deliver one Graph API message payload and return the decoded response."""
        ...

    async def mark_read(self, message_id: str) -> None:
        ...


SENSITIVE_KEYS = {"access_token", "verify_token", "webhook_secret", "authorization", "token", "app_secret"}


def _mask_value(value: Any) -> Any:
    if value is None:
        return None
    text = str(value)
    if len(text) <= 4:
        return "****"
    return f"****{text[-4:]}"


def sanitize_payload(payload: dict[str, Any]) -> dict[str, Any]:
    def _sanitize(value: Any) -> Any:
        if isinstance(value, dict):
            return {key: _sanitize_value(key, inner) for key, inner in value.items()}
        if isinstance(value, list):
            return [_sanitize(item) for item in value]
        return value

    def _sanitize_value(key: str, value: Any) -> Any:
        if key.lower() in SENSITIVE_KEYS:
            return _mask_value(value)
        return _sanitize(value)

    return _sanitize(payload)


def safe_json(payload: Any) -> str:
    try:
        return json.dumps(payload, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return "{}"


def summarize_payload(payload: dict[str, Any]) -> str:
    """Short human readable text stored in the message log for an outbound payload."""
    message_type = payload.get("type") or "text"
    if message_type == "text":
        return ((payload.get("text") or {}).get("body")) or ""
    if message_type == "interactive":
        interactive = payload.get("interactive") or {}
        return ((interactive.get("body") or {}).get("text")) or f"[{interactive.get('type', 'interactive')}]"
    if message_type == "template":
        return f"[Template: {(payload.get('template') or {}).get('name', '')}]"
    if message_type in {"image", "video", "document"}:
        media = payload.get(message_type) or {}
        return media.get("caption") or f"[{message_type.title()}]"
    if message_type == "reaction":
        return f"[Reaction: {(payload.get('reaction') or {}).get('emoji', '')}]"
    return f"[{message_type.title()}]"
