from __future__ import annotations

import io
from datetime import datetime, timedelta, timezone

import pytest

from api.config import settings
from api.db.session import SessionLocal
from api.models import UserSession
from api.services.auth import AuthService


@pytest.mark.parametrize(
    ("method", "path"),
    [
        ("get", "/contracts"),
        ("get", "/contracts/00000000-0000-0000-0000-000000000000"),
        ("delete", "/contracts/00000000-0000-0000-0000-000000000000"),
        ("post", "/contracts/00000000-0000-0000-0000-000000000000/reanalyze"),
        ("get", "/dashboard/stats"),
    ],
)
def test_contract_routes_require_auth(client, method, path):
    response = getattr(client, method)(path)
    assert response.status_code == 401
    assert response.json()["detail"] == "Authentication required"


def test_upload_requires_auth(client):
    response = client.post(
        "/contracts/upload",
        files={"file": ("sample.pdf", io.BytesIO(b"%PDF-1.4\n%%EOF"), "application/pdf")},
    )
    assert response.status_code == 401
    assert response.json()["detail"] == "Authentication required"


def test_expired_session_is_rejected(client):
    with SessionLocal() as session:
        service = AuthService(session)
        user = service.get_or_create_user("expired@example.com")
        token = service.create_session(user)
        session.query(UserSession).filter(UserSession.user_id == user.id).update(
            {"expires_at": datetime.now(timezone.utc) - timedelta(minutes=1)}
        )
        session.commit()

    client.cookies.set(settings.cookie_name, token)
    try:
        assert client.get("/contracts").status_code == 401
    finally:
        client.cookies.clear()


def test_revoked_session_is_rejected(client, auth_context):
    assert client.get("/contracts").status_code == 200

    with SessionLocal() as session:
        session.query(UserSession).filter(
            UserSession.session_token_hash == AuthService.hash_token(auth_context["token"])
        ).update({"revoked_at": datetime.now(timezone.utc)})
        session.commit()

    assert client.get("/contracts").status_code == 401


def test_internal_trigger_checks_token_when_configured(client, monkeypatch):
    monkeypatch.setattr(settings, "internal_api_token", "sweep-secret")

    assert client.post("/internal/process-notifications").status_code == 401
    assert (
        client.post("/internal/process-notifications", headers={"X-Internal-Token": "wrong"}).status_code == 401
    )
    response = client.post("/internal/process-notifications", headers={"X-Internal-Token": "sweep-secret"})
    assert response.status_code == 200
