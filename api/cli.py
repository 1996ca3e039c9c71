from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

import typer

from .config import settings
from .db.session import SessionLocal
from .services.auth import AuthService
from .services.notification_store import create_notification
from .workers.notifications import NotificationSweeper

app = typer.Typer(help="Contract Analyzer administrative CLI")


@app.command()
def create_user(
    email: str = typer.Argument(..., help="User email"),
    full_name: str = typer.Option("", "--full-name", "-f", help="Optional full name"),
    locale: str = typer.Option("en", "--locale", "-l", show_default=True, help="Preferred locale (en/de)"),
) -> None:
    """Create (or look up) a user account."""
    db = SessionLocal()
    try:
        user = AuthService(db).get_or_create_user(email, locale, full_name or None)
        db.commit()
        typer.echo(f"User {user.email} ({user.id})")
    finally:
        db.close()


@app.command()
def create_session(
    email: str = typer.Argument(..., help="User email to authenticate as"),
    locale: str = typer.Option("en", "--locale", "-l", show_default=True),
) -> None:
    """Mint a session cookie for local testing."""
    db = SessionLocal()
    try:
        auth = AuthService(db)
        user = auth.get_or_create_user(email, locale)
        raw_token = auth.create_session(user, user_agent="cli")
        db.commit()
        typer.echo(f"{settings.cookie_name}={raw_token}")
    finally:
        db.close()


@app.command()
def process_notifications() -> None:
    """Run one notification sweep now."""
    stats = NotificationSweeper().run()
    typer.echo(f"Notification sweep: {stats or {}}")


@app.command()
def schedule_notification(
    recipient: str = typer.Argument(..., help="Recipient email"),
    subject: str = typer.Option(..., "--subject", "-s"),
    body: str = typer.Option(..., "--body", "-b"),
    send_at: Optional[datetime] = typer.Option(None, "--at", help="UTC send time, defaults to now"),
    contract_id: Optional[str] = typer.Option(None, "--contract", help="Related contract id"),
) -> None:
    """Queue an ad-hoc email for the next sweep."""
    scheduled_for = send_at.replace(tzinfo=timezone.utc) if send_at and send_at.tzinfo is None else send_at
    db = SessionLocal()
    try:
        notification = create_notification(
            db,
            kind="manual",
            recipient_email=recipient.strip().lower(),
            subject=subject,
            text_body=body,
            scheduled_for=scheduled_for,
            contract_id=uuid.UUID(contract_id) if contract_id else None,
        )
        db.commit()
        typer.echo(f"Scheduled notification {notification.id} for {notification.scheduled_for.isoformat()}")
    finally:
        db.close()


if __name__ == "__main__":
    app()
