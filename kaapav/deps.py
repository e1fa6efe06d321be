# kaapav/deps.py
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Optional

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from kaapav.conversation.context import ConversationContext
from kaapav.core.database import get_db
from kaapav.core.request_context import set_request_context
from kaapav.models.agent import Agent
from kaapav.runtime import Runtime
from kaapav.services.auth import SESSION_COOKIE, decode_access_token, decode_session

logger = logging.getLogger(__name__)


def _extract_agent_id(payload: Dict[str, Any]) -> Optional[int]:
    """Agent id from a JWT or session payload.

    Accepts ``sub`` (JWT convention) or ``agent_id``, as int or numeric string.
    """
    raw = payload.get("sub", None)
    if raw is None:
        raw = payload.get("agent_id", None)

    if raw is None:
        return None

    if isinstance(raw, int):
        return raw

    if isinstance(raw, str):
        raw = raw.strip()
        if raw.isdigit():
            return int(raw)

    return None


def _token_payload(request: Request) -> Optional[Dict[str, Any]]:
    header = request.headers.get("Authorization") or ""
    if header.lower().startswith("bearer "):
        try:
            return decode_access_token(header[7:].strip())
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid or expired token",
                headers={"WWW-Authenticate": "Bearer"},
            )

    cookie = request.cookies.get(SESSION_COOKIE)
    if cookie:
        payload = decode_session(cookie)
        if not payload:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Session expired")
        return payload
    return None


def get_current_agent(request: Request, db: Session = Depends(get_db)) -> Agent:
    """Agent behind the bearer token or the session cookie."""
    payload = _token_payload(request)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    agent_id = _extract_agent_id(payload)
    if agent_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token (no agent id)")

    agent = db.query(Agent).filter(Agent.id == agent_id, Agent.active.is_(True)).first()
    if not agent:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Agent not found")

    request.state.agent = agent
    set_request_context(agent_id=str(agent.id))
    return agent


def require_role(roles: Iterable[str]):
    allowed = {role.strip().lower() for role in roles}

    def _dependency(request: Request, agent: Agent = Depends(get_current_agent)) -> Agent:
        if (agent.role or "").strip().lower() not in allowed:
            logger.warning(
                "Access denied: agent_id=%s role=%s endpoint=%s %s",
                agent.id,
                agent.role,
                request.method,
                request.url.path,
            )
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient role")
        return agent

    return _dependency


require_admin = require_role(["admin"])


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime


def get_context(request: Request, db: Session = Depends(get_db)) -> ConversationContext:
    return get_runtime(request).context(db)
