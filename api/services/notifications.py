from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Iterable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..models.contracts import Contract
from ..models.email_notifications import EmailNotification
from ..models.events import Event
from ..models.users import User
from .email import EmailClient, EmailMessage, get_email_client
from .exceptions import EmailTimeoutError, StorageError
from .metrics import record_notification
from .notification_store import (
    create_notification,
    get_due_notification_ids,
    lock_due_notification,
    mark_notification_sent,
    notification_exists,
    record_delivery_failure,
)

logger = logging.getLogger(__name__)

KIND_ANALYSIS_READY = "analysis_ready"
KIND_NOTICE_DEADLINE = "notice_deadline"
KIND_NEWSLETTER_CONFIRMATION = "newsletter_confirmation"

# reminders go out in the morning (UTC) of the reminder day
REMINDER_SEND_TIME = time(hour=8, tzinfo=timezone.utc)


def _german(locale: str | None) -> bool:
    return (locale or "en").startswith("de")


def _contract_url(contract_id: uuid.UUID) -> str:
    return f"{settings.app_url.rstrip('/')}/contracts/{contract_id}"


def _render_analysis_ready(locale: str, contract: Contract, analysis: dict[str, Any]) -> tuple[str, str]:
    provider = analysis.get("provider") or contract.filename
    summary = analysis.get("summary") or ""
    risks = analysis.get("risks") or []
    if _german(locale):
        subject = f"Ihre Vertragsanalyse ist fertig: {provider}"
        text = (
            "Hallo,\n\n"
            f"die Analyse Ihres Vertrags '{contract.filename}' ist abgeschlossen.\n\n"
            f"{summary}\n\n"
            f"Gefundene Risiken: {len(risks)}\n"
            f"Details: {_contract_url(contract.id)}"
        )
    else:
        subject = f"Your contract analysis is ready: {provider}"
        text = (
            "Hello,\n\n"
            f"the analysis of your contract '{contract.filename}' is complete.\n\n"
            f"{summary}\n\n"
            f"Risks found: {len(risks)}\n"
            f"Details: {_contract_url(contract.id)}"
        )
    return subject, text


def _render_notice_deadline(
    locale: str, contract: Contract, analysis: dict[str, Any], deadline: date, days_out: int
) -> tuple[str, str]:
    provider = analysis.get("provider") or contract.filename
    deadline_str = deadline.isoformat()
    if _german(locale):
        subject = f"Kündigungsfrist für {provider} endet in {days_out} Tag{'en' if days_out != 1 else ''}"
        text = (
            "Hallo,\n\n"
            f"die Kündigungsfrist für Ihren Vertrag '{contract.filename}' endet am {deadline_str}.\n"
            "Prüfen Sie jetzt, ob sich ein Wechsel lohnt.\n\n"
            f"Details: {_contract_url(contract.id)}"
        )
    else:
        subject = f"Notice deadline for {provider} in {days_out} day{'s' if days_out != 1 else ''}"
        text = (
            "Hello,\n\n"
            f"the notice period for your contract '{contract.filename}' ends on {deadline_str}.\n"
            "Now is a good moment to check whether switching pays off.\n\n"
            f"Details: {_contract_url(contract.id)}"
        )
    return subject, text


def render_newsletter_confirmation(email: str) -> tuple[str, str]:
    return (
        "Newsletter subscription confirmed",
        (
            f"Hello {email},\n\n"
            "thanks for subscribing to our newsletter. You can unsubscribe at any time at "
            f"{settings.app_url.rstrip('/')}/newsletter/unsubscribe."
        ),
    )


def _parse_deadline(value: Any) -> date | None:
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def schedule_analysis_notifications(
    db: Session,
    *,
    user: User,
    contract: Contract,
    analysis: dict[str, Any],
    now: datetime | None = None,
    offsets: Iterable[int] | None = None,
    notify_ready: bool = True,
) -> list[EmailNotification]:
    """Queue the follow-up emails for a freshly analyzed contract.

    An ``analysis_ready`` email is due immediately. ``notice_deadline``
    reminders are queued for each offset that still lies in the future and
    is not already scheduled for this contract.
    """
    now = now or datetime.now(timezone.utc)
    locale = user.preferred_locale or "en"
    created: list[EmailNotification] = []

    if notify_ready:
        subject, text = _render_analysis_ready(locale, contract, analysis)
        created.append(
            create_notification(
                db,
                kind=KIND_ANALYSIS_READY,
                recipient_email=user.email,
                subject=subject,
                text_body=text,
                scheduled_for=now,
                user_id=user.id,
                contract_id=contract.id,
            )
        )

    deadline = _parse_deadline(analysis.get("notice_deadline"))
    if deadline is None:
        return created

    for offset in offsets if offsets is not None else settings.notice_reminder_offsets_days:
        reminder_day = deadline - timedelta(days=offset)
        run_at = datetime.combine(reminder_day, REMINDER_SEND_TIME)
        if run_at <= now:
            continue
        if notification_exists(db, contract_id=contract.id, kind=KIND_NOTICE_DEADLINE, scheduled_for=run_at):
            continue
        subject, text = _render_notice_deadline(locale, contract, analysis, deadline, offset)
        created.append(
            create_notification(
                db,
                kind=KIND_NOTICE_DEADLINE,
                recipient_email=user.email,
                subject=subject,
                text_body=text,
                scheduled_for=run_at,
                user_id=user.id,
                contract_id=contract.id,
            )
        )

    return created


def dispatch_notifications(
    db: Session,
    *,
    now: datetime | None = None,
    email_client: EmailClient | None = None,
    batch_size: int | None = None,
) -> dict[str, int]:
    """Send every due, unsent notification once.

    Each row is claimed, sent and marked in its own transaction. A transport
    failure leaves the row pending for the next sweep and does not stop the
    remaining rows. Delivery is at-least-once: if the process dies between a
    successful send and the commit of ``sent``, the next sweep sends again.
    """
    now = now or datetime.now(timezone.utc)
    client = email_client or get_email_client()
    stats: dict[str, int] = defaultdict(int)

    try:
        due_ids = get_due_notification_ids(db, now, limit=batch_size)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise StorageError(f"Failed to load due notifications: {exc}") from exc

    for notification_id in due_ids:
        try:
            notification = lock_due_notification(db, notification_id, now)
        except SQLAlchemyError as exc:
            db.rollback()
            raise StorageError(f"Failed to lock notification {notification_id}: {exc}") from exc

        if notification is None:
            # sent or claimed by a concurrent sweep since the id was read
            db.rollback()
            stats["skipped"] += 1
            continue

        message = EmailMessage(
            to=notification.recipient_email,
            subject=notification.subject,
            text_body=notification.text_body,
            html_body=notification.html_body,
        )

        try:
            client.send(message)
        except Exception as exc:
            if isinstance(exc, EmailTimeoutError):
                logger.warning("Notification send timed out: notification=%s", notification_id)
            else:
                logger.exception("Notification send failed: notification=%s", notification_id)
            try:
                record_delivery_failure(db, notification_id, str(exc))
                db.add(
                    Event(
                        user_id=notification.user_id,
                        contract_id=notification.contract_id,
                        notification_id=notification_id,
                        type="notification_failed",
                        data={"kind": notification.kind, "error": str(exc)[:500]},
                    )
                )
                db.commit()
            except SQLAlchemyError as db_exc:
                db.rollback()
                raise StorageError(f"Failed to record delivery failure: {db_exc}") from db_exc
            record_notification("failed")
            stats["failed"] += 1
            continue

        try:
            mark_notification_sent(db, notification_id, now)
            db.add(
                Event(
                    user_id=notification.user_id,
                    contract_id=notification.contract_id,
                    notification_id=notification_id,
                    type="notification_sent",
                    data={
                        "kind": notification.kind,
                        "recipient": notification.recipient_email,
                        "sent_at": now.isoformat(),
                    },
                )
            )
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise StorageError(f"Failed to mark notification {notification_id} sent: {exc}") from exc

        record_notification("sent")
        stats["sent"] += 1

    return dict(stats)
