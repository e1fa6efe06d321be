from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from kaapav.core.config import ADMIN_SESSION_COOKIE_SECURE, ADMIN_SESSION_MAX_AGE_SECONDS
from kaapav.core.database import get_db
from kaapav.deps import get_current_agent
from kaapav.models.agent import Agent
from kaapav.services.auth import SESSION_COOKIE, authenticate, create_access_token, create_session

router = APIRouter(prefix="/api/auth", tags=["auth"])
logger = logging.getLogger(__name__)


class LoginPayload(BaseModel):
    email: str = Field(..., min_length=3)
    password: str = Field(..., min_length=1)


class AgentRead(BaseModel):
    id: int
    email: str
    name: str
    role: str
    active: bool


def agent_to_dict(agent: Agent) -> dict:
    return {
        "id": agent.id,
        "email": agent.email,
        "name": agent.name,
        "role": agent.role,
        "active": bool(agent.active),
    }


@router.post("/login")
def login(payload: LoginPayload, response: Response, db: Session = Depends(get_db)):
    agent = authenticate(db, payload.email, payload.password)
    if agent is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password")

    token = create_access_token(agent.id, {"role": agent.role})
    session = create_session({"agent_id": agent.id, "role": agent.role})
    response.set_cookie(
        SESSION_COOKIE,
        session,
        max_age=ADMIN_SESSION_MAX_AGE_SECONDS,
        httponly=True,
        secure=ADMIN_SESSION_COOKIE_SECURE,
        samesite="lax",
    )
    logger.info("agent logged in", extra={"agent_id": str(agent.id)})
    return {"access_token": token, "token_type": "bearer", "agent": agent_to_dict(agent)}


@router.post("/logout")
def logout(response: Response):
    response.delete_cookie(SESSION_COOKIE)
    return {"ok": True}


@router.get("/me", response_model=AgentRead)
def me(agent: Agent = Depends(get_current_agent)):
    return agent_to_dict(agent)
