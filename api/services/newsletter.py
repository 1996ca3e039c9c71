from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ..models.newsletter_subscriptions import NewsletterSubscription
from .email import EmailClient, EmailMessage
from .exceptions import ExternalServiceError
from .notification_store import create_notification
from .notifications import KIND_NEWSLETTER_CONFIRMATION, render_newsletter_confirmation

logger = logging.getLogger(__name__)


def _normalize(email: str) -> str:
    return email.strip().lower()


def subscribe(db: Session, email: str) -> NewsletterSubscription:
    """Upsert: an inactive row is reactivated rather than duplicated."""
    normalized = _normalize(email)
    subscription = db.execute(
        select(NewsletterSubscription)
        .where(NewsletterSubscription.email == normalized)
        .with_for_update()
    ).scalar_one_or_none()
    if subscription is None:
        subscription = NewsletterSubscription(email=normalized, is_active=True)
        db.add(subscription)
    elif not subscription.is_active:
        subscription.is_active = True
        subscription.updated_at = datetime.now(timezone.utc)
    db.flush()
    return subscription


def unsubscribe(db: Session, email: str) -> bool:
    result = db.execute(
        update(NewsletterSubscription)
        .where(NewsletterSubscription.email == _normalize(email))
        .values(is_active=False, updated_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    return (result.rowcount or 0) > 0


def send_confirmation(db: Session, email: str, email_client: EmailClient) -> bool:
    """Send the confirmation right away; queue it for the sweep if that fails."""
    subject, text = render_newsletter_confirmation(_normalize(email))
    try:
        email_client.send(EmailMessage(to=_normalize(email), subject=subject, text_body=text))
        return True
    except ExternalServiceError:
        logger.warning("Newsletter confirmation send failed, queueing for sweep: %s", email, exc_info=True)
        create_notification(
            db,
            kind=KIND_NEWSLETTER_CONFIRMATION,
            recipient_email=_normalize(email),
            subject=subject,
            text_body=text,
        )
        return False
