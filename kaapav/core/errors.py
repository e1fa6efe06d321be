from __future__ import annotations

import json
from typing import Any


class KaapavError(Exception):
    """Base for errors raised by the service layer."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str = "", *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details or {}


class ConfigurationError(KaapavError):
    status_code = 500
    code = "configuration_error"


class ValidationError(KaapavError):
    status_code = 400
    code = "validation_error"


class NotFoundError(KaapavError):
    status_code = 404
    code = "not_found"


class ConflictError(KaapavError):
    status_code = 409
    code = "conflict"


# Graph API error codes that are worth retrying (rate limits and temporary failures)
TRANSIENT_PROVIDER_CODES = {4, 80007, 130429, 131000, 131016, 131048, 131056}


class ProviderError(KaapavError):
    status_code = 502
    code = "provider_error"

    def __init__(self, provider: str, status_code: int, body_text: str) -> None:
        super().__init__(f"{provider} error {status_code}: {body_text[:500]}")
        self.provider = provider
        self.http_status = status_code
        self.body_text = body_text

    @property
    def provider_code(self) -> int | None:
        try:
            data = json.loads(self.body_text or "{}")
        except ValueError:
            return None
        if not isinstance(data, dict):
            return None
        code = (data.get("error") or {}).get("code")
        return code if isinstance(code, int) else None

    @property
    def transient(self) -> bool:
        if self.http_status == 429 or self.http_status >= 500:
            return True
        return self.provider_code in TRANSIENT_PROVIDER_CODES


class WhatsAppSendError(ProviderError):
    def __init__(self, status_code: int, body_text: str) -> None:
        super().__init__("whatsapp", status_code, body_text)
