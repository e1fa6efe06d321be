from __future__ import annotations

from contextvars import ContextVar


_REQUEST_ID_CTX: ContextVar[str | None] = ContextVar("request_id", default=None)
_PHONE_CTX: ContextVar[str | None] = ContextVar("phone", default=None)
_AGENT_ID_CTX: ContextVar[str | None] = ContextVar("agent_id", default=None)


def set_request_context(
    *, request_id: str | None = None, phone: str | None = None, agent_id: str | None = None
) -> None:
    if request_id is not None:
        _REQUEST_ID_CTX.set(request_id)
    if phone is not None:
        _PHONE_CTX.set(phone)
    if agent_id is not None:
        _AGENT_ID_CTX.set(agent_id)


def get_request_id() -> str | None:
    return _REQUEST_ID_CTX.get()


def get_phone() -> str | None:
    return _PHONE_CTX.get()


def get_agent_id() -> str | None:
    return _AGENT_ID_CTX.get()


def clear_request_context() -> None:
    _REQUEST_ID_CTX.set(None)
    _PHONE_CTX.set(None)
    _AGENT_ID_CTX.set(None)
