from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ..models.email_notifications import EmailNotification


def create_notification(
    db: Session,
    *,
    kind: str,
    recipient_email: str,
    subject: str,
    text_body: str,
    scheduled_for: datetime | None = None,
    html_body: str | None = None,
    user_id: uuid.UUID | None = None,
    contract_id: uuid.UUID | None = None,
) -> EmailNotification:
    notification = EmailNotification(
        kind=kind,
        recipient_email=recipient_email,
        subject=subject,
        text_body=text_body,
        html_body=html_body,
        scheduled_for=scheduled_for or datetime.now(timezone.utc),
        user_id=user_id,
        contract_id=contract_id,
        sent=False,
        attempts=0,
    )
    db.add(notification)
    db.flush()
    return notification


def notification_exists(
    db: Session, *, contract_id: uuid.UUID, kind: str, scheduled_for: datetime
) -> bool:
    return (
        db.execute(
            select(EmailNotification.id).where(
                EmailNotification.contract_id == contract_id,
                EmailNotification.kind == kind,
                EmailNotification.scheduled_for == scheduled_for,
            )
        ).first()
        is not None
    )


def get_due_notification_ids(
    db: Session, now: datetime, *, limit: int | None = None
) -> list[uuid.UUID]:
    stmt = (
        select(EmailNotification.id)
        .where(EmailNotification.sent.is_(False), EmailNotification.scheduled_for <= now)
        .order_by(EmailNotification.scheduled_for.asc())
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    return list(db.execute(stmt).scalars().all())


def lock_due_notification(
    db: Session, notification_id: uuid.UUID, now: datetime
) -> EmailNotification | None:
    """Row-lock one notification if it is still due and unsent.

    Rows locked by a concurrent sweeper are skipped rather than waited on.
    """
    return db.execute(
        select(EmailNotification)
        .where(
            EmailNotification.id == notification_id,
            EmailNotification.sent.is_(False),
            EmailNotification.scheduled_for <= now,
        )
        .with_for_update(skip_locked=True)
    ).scalar_one_or_none()


def mark_notification_sent(db: Session, notification_id: uuid.UUID, sent_at: datetime) -> bool:
    result = db.execute(
        update(EmailNotification)
        .where(EmailNotification.id == notification_id, EmailNotification.sent.is_(False))
        .values(
            sent=True,
            sent_at=sent_at,
            attempts=EmailNotification.attempts + 1,
            last_error=None,
        )
        .execution_options(synchronize_session=False)
    )
    return (result.rowcount or 0) > 0


def record_delivery_failure(db: Session, notification_id: uuid.UUID, error: str) -> bool:
    result = db.execute(
        update(EmailNotification)
        .where(EmailNotification.id == notification_id, EmailNotification.sent.is_(False))
        .values(attempts=EmailNotification.attempts + 1, last_error=error[:1000])
        .execution_options(synchronize_session=False)
    )
    return (result.rowcount or 0) > 0
