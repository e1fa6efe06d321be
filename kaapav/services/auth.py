from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from jose import JWTError, jwt
from sqlalchemy import func
from sqlalchemy.orm import Session

from kaapav.core.config import (
    ADMIN_SESSION_MAX_AGE_SECONDS,
    ADMIN_SESSION_SECRET,
    DEV_ADMIN_EMAIL,
    DEV_ADMIN_PASSWORD,
    IS_DEV,
    IS_TEST,
    JWT_ALGORITHM,
    JWT_EXPIRE_MINUTES,
    JWT_SECRET_KEY,
)
from kaapav.core.errors import ConfigurationError, ConflictError, NotFoundError, ValidationError
from kaapav.models.agent import AGENT_ROLES, Agent
from kaapav.services.passwords import hash_password, verify_password
from kaapav.utils.clock import utcnow

logger = logging.getLogger(__name__)

SESSION_COOKIE = "kaapav_session"
SESSION_SALT = "kaapav-admin-session"
_DEV_SECRET = "kaapav-dev-secret"


def _secret(value: str, name: str) -> str:
    if value:
        return value
    if IS_DEV or IS_TEST:
        return _DEV_SECRET
    raise ConfigurationError(f"{name} is not configured")


# -- JWT -------------------------------------------------------------------


def create_access_token(
    agent_id: int | str,
    extra: Optional[Dict[str, Any]] = None,
    expires_minutes: int = JWT_EXPIRE_MINUTES,
) -> str:
    """"sub" must be a string for python-jose."""
    now = datetime.now(timezone.utc)
    payload: Dict[str, Any] = {
        "sub": str(agent_id),
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=expires_minutes)).timestamp()),
    }
    if extra:
        payload.update(extra)
    return jwt.encode(payload, _secret(JWT_SECRET_KEY, "JWT_SECRET_KEY"), algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> Dict[str, Any]:
    try:
        return jwt.decode(token, _secret(JWT_SECRET_KEY, "JWT_SECRET_KEY"), algorithms=[JWT_ALGORITHM])
    except JWTError as exc:
        raise ValueError("Invalid or expired token") from exc


# -- signed session cookie -------------------------------------------------


def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(_secret(ADMIN_SESSION_SECRET, "ADMIN_SESSION_SECRET"), salt=SESSION_SALT)


def create_session(payload: Dict[str, Any]) -> str:
    if "exp" not in payload:
        payload = {**payload, "exp": int(time.time()) + ADMIN_SESSION_MAX_AGE_SECONDS}
    return _serializer().dumps(payload)


def decode_session(token: str) -> Optional[Dict[str, Any]]:
    try:
        payload = _serializer().loads(token, max_age=ADMIN_SESSION_MAX_AGE_SECONDS)
    except (BadSignature, SignatureExpired, ValueError):
        return None
    exp = payload.get("exp")
    if exp is not None:
        try:
            if int(exp) < int(time.time()):
                return None
        except (TypeError, ValueError):
            return None
    return payload


# -- agents ----------------------------------------------------------------


def get_agent_by_email(db: Session, email: str) -> Agent | None:
    normalized = (email or "").strip().lower()
    return db.query(Agent).filter(func.lower(Agent.email) == normalized).first()


def authenticate(db: Session, email: str, password: str) -> Agent | None:
    agent = get_agent_by_email(db, email)
    if agent is None or not agent.active:
        return None
    if not verify_password(password, agent.password_hash):
        logger.warning("failed login", extra={"agent_id": str(agent.id)})
        return None
    agent.last_login_at = utcnow()
    db.commit()
    return agent


def list_agents(db: Session) -> list[Agent]:
    return db.query(Agent).order_by(Agent.created_at).all()


def create_agent(db: Session, *, email: str, name: str, password: str, role: str = "agent") -> Agent:
    if role not in AGENT_ROLES:
        raise ValidationError("Invalid role", details={"role": role})
    if not password or len(password) < 6:
        raise ValidationError("Password must have at least 6 characters")
    if get_agent_by_email(db, email) is not None:
        raise ConflictError("Agent already exists", details={"email": email})
    agent = Agent(
        email=email.strip().lower(),
        name=name.strip() or email,
        password_hash=hash_password(password),
        role=role,
        active=True,
    )
    db.add(agent)
    db.commit()
    db.refresh(agent)
    return agent


def update_agent(db: Session, agent_id: int, changes: Dict[str, Any]) -> Agent:
    agent = db.get(Agent, agent_id)
    if agent is None:
        raise NotFoundError("Agent not found", details={"id": agent_id})
    if changes.get("name"):
        agent.name = changes["name"].strip()
    if changes.get("role") is not None:
        if changes["role"] not in AGENT_ROLES:
            raise ValidationError("Invalid role", details={"role": changes["role"]})
        agent.role = changes["role"]
    if changes.get("active") is not None:
        agent.active = bool(changes["active"])
    if changes.get("password"):
        agent.password_hash = hash_password(changes["password"])
    db.commit()
    db.refresh(agent)
    return agent


def ensure_bootstrap_admin(db: Session) -> Agent | None:
    """Create the first admin from DEV_ADMIN_* when the table is empty."""
    if not DEV_ADMIN_EMAIL or not DEV_ADMIN_PASSWORD:
        return None
    if db.query(Agent.id).first() is not None:
        return None
    agent = create_agent(db, email=DEV_ADMIN_EMAIL, name="Admin", password=DEV_ADMIN_PASSWORD, role="admin")
    logger.info("bootstrap admin created", extra={"agent_id": str(agent.id)})
    return agent
