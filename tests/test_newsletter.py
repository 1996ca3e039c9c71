from __future__ import annotations

from sqlalchemy import select

from api.db.session import SessionLocal
from api.main import app
from api.models import EmailNotification, NewsletterSubscription
from api.services.email import get_email_client
from api.services.notifications import KIND_NEWSLETTER_CONFIRMATION


def _subscription(email: str) -> NewsletterSubscription | None:
    with SessionLocal() as session:
        row = session.execute(
            select(NewsletterSubscription).where(NewsletterSubscription.email == email)
        ).scalar_one_or_none()
        if row is not None:
            session.expunge(row)
        return row


def test_subscribe_sends_confirmation(client, email_client):
    app.dependency_overrides[get_email_client] = lambda: email_client
    try:
        response = client.post("/newsletter/subscribe", json={"email": "Reader@Example.com"})
    finally:
        app.dependency_overrides.pop(get_email_client, None)

    assert response.status_code == 200
    assert _subscription("reader@example.com").is_active is True
    assert [message.to for message in email_client.sent] == ["reader@example.com"]


def test_subscribe_rejects_invalid_email(client):
    response = client.post("/newsletter/subscribe", json={"email": "not-an-email"})
    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid email address"


def test_unsubscribe_then_resubscribe_reactivates(client):
    assert client.post("/newsletter/subscribe", json={"email": "loyal@example.com"}).status_code == 200

    assert client.post("/newsletter/unsubscribe", json={"email": "loyal@example.com"}).status_code == 200
    assert _subscription("loyal@example.com").is_active is False

    assert client.post("/newsletter/subscribe", json={"email": "loyal@example.com"}).status_code == 200
    with SessionLocal() as session:
        rows = session.execute(
            select(NewsletterSubscription).where(NewsletterSubscription.email == "loyal@example.com")
        ).scalars().all()
        assert len(rows) == 1
        assert rows[0].is_active is True


def test_unsubscribe_unknown_email_is_not_found(client):
    response = client.post("/newsletter/unsubscribe", json={"email": "ghost@example.com"})
    assert response.status_code == 404
    assert response.json()["detail"] == "Email not found"


def test_failed_confirmation_is_queued_for_sweep(client, email_client):
    email_client.fail_for = {"flaky@example.com"}
    app.dependency_overrides[get_email_client] = lambda: email_client
    try:
        response = client.post("/newsletter/subscribe", json={"email": "flaky@example.com"})
    finally:
        app.dependency_overrides.pop(get_email_client, None)

    assert response.status_code == 200
    with SessionLocal() as session:
        queued = session.execute(
            select(EmailNotification).where(EmailNotification.recipient_email == "flaky@example.com")
        ).scalars().all()
        assert [row.kind for row in queued] == [KIND_NEWSLETTER_CONFIRMATION]
        assert queued[0].sent is False
