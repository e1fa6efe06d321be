from fastapi import FastAPI
from fastapi.testclient import TestClient

import kaapav.main as main_module
from kaapav.core.database import get_db
from kaapav.core.errors import KaapavError
from kaapav.main import handle_kaapav_error
from kaapav.routers.admin import router as admin_router
from kaapav.routers.auth import router as auth_router
from kaapav.routers.quick_replies import router as quick_replies_router
from kaapav.services.auth import SESSION_COOKIE, create_agent
from tests.fixtures_data import build_session_factory


def _build_client():
    db = build_session_factory()()
    create_agent(db, email="admin@kaapav.com", name="Admin", password="secret123", role="admin")
    create_agent(db, email="agent@kaapav.com", name="Agent", password="secret123")

    app = FastAPI()
    app.include_router(auth_router)
    app.include_router(admin_router)
    app.include_router(quick_replies_router)
    app.add_exception_handler(KaapavError, handle_kaapav_error)
    app.dependency_overrides[get_db] = lambda: db
    return TestClient(app), db


def _login(client, email):
    response = client.post("/api/auth/login", json={"email": email, "password": "secret123"})
    assert response.status_code == 200
    return response


def _auth(client, email):
    token = _login(client, email).json()["access_token"]
    return {"Authorization": f"Bearer {token}"}


def test_login_returns_token_and_session_cookie():
    client, _ = _build_client()

    response = _login(client, "admin@kaapav.com")

    body = response.json()
    assert body["token_type"] == "bearer"
    assert body["agent"]["role"] == "admin"
    assert SESSION_COOKIE in response.cookies


def test_login_rejects_wrong_password():
    client, _ = _build_client()

    response = client.post("/api/auth/login", json={"email": "admin@kaapav.com", "password": "nope"})

    assert response.status_code == 401


def test_me_accepts_bearer_token():
    client, _ = _build_client()

    response = client.get("/api/auth/me", headers=_auth(client, "agent@kaapav.com"))

    assert response.status_code == 200
    assert response.json()["email"] == "agent@kaapav.com"


def test_me_accepts_session_cookie():
    client, _ = _build_client()
    session = _login(client, "agent@kaapav.com").cookies[SESSION_COOKIE]
    client.cookies.clear()

    response = client.get("/api/auth/me", headers={"Cookie": f"{SESSION_COOKIE}={session}"})

    assert response.status_code == 200


def test_protected_routes_require_authentication():
    client, _ = _build_client()

    assert client.get("/api/quick-replies").status_code == 401
    assert client.get("/api/stats").status_code == 401
    bad = client.get("/api/stats", headers={"Authorization": "Bearer not-a-token"})
    assert bad.status_code == 401


def test_agent_cannot_manage_agents():
    client, _ = _build_client()

    response = client.get("/api/agents", headers=_auth(client, "agent@kaapav.com"))

    assert response.status_code == 403
    assert response.json()["detail"] == "Insufficient role"


def test_admin_lists_agents():
    client, _ = _build_client()

    response = client.get("/api/agents", headers=_auth(client, "admin@kaapav.com"))

    assert response.status_code == 200
    assert {agent["email"] for agent in response.json()["agents"]} == {"admin@kaapav.com", "agent@kaapav.com"}


def test_quick_reply_crud():
    client, _ = _build_client()
    headers = _auth(client, "agent@kaapav.com")

    created = client.post(
        "/api/quick-replies",
        json={"keyword": "price", "response": "Prices start at ₹199", "priority": 3},
        headers=headers,
    )
    assert created.status_code == 200
    reply_id = created.json()["id"]
    assert created.json()["match_type"] == "contains"

    updated = client.put(f"/api/quick-replies/{reply_id}", json={"is_active": False}, headers=headers)
    assert updated.json()["is_active"] is False

    listed = client.get("/api/quick-replies", headers=headers).json()["quick_replies"]
    assert [reply["keyword"] for reply in listed] == ["price"]

    assert client.delete(f"/api/quick-replies/{reply_id}", headers=headers).json() == {"ok": True}


def test_invalid_quick_reply_maps_to_validation_error():
    client, _ = _build_client()
    headers = _auth(client, "agent@kaapav.com")

    response = client.post(
        "/api/quick-replies",
        json={"keyword": "(", "response": "x", "match_type": "regex"},
        headers=headers,
    )

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "validation_error"


def test_missing_quick_reply_is_not_found():
    client, _ = _build_client()

    response = client.delete("/api/quick-replies/999", headers=_auth(client, "agent@kaapav.com"))

    assert response.status_code == 404


def test_service_root_and_health(monkeypatch):
    monkeypatch.setattr(main_module, "_startup_tasks", lambda: None)
    client = TestClient(main_module.app)

    assert client.get("/").json() == {"status": "ok", "service": "kaapav"}
    assert client.get("/health").json() == {"status": "healthy"}
