from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    ReadTimeoutError,
)

from ..config import settings
from .aws import NO_RETRIES, boto3_client
from .exceptions import EmailDeliveryError, EmailTimeoutError

logger = logging.getLogger(__name__)


@dataclass
class EmailMessage:
    to: str
    subject: str
    text_body: str
    html_body: Optional[str] = None


class EmailClient:
    def send(self, message: EmailMessage) -> None:  # pragma: no cover - interface
        raise NotImplementedError


class SesEmailClient(EmailClient):
    def __init__(self, timeout_seconds: float | None = None) -> None:
        timeout = timeout_seconds if timeout_seconds is not None else settings.email_timeout_seconds
        self._client = boto3_client("ses", timeout_seconds=timeout, retries=NO_RETRIES)

    def send(self, message: EmailMessage) -> None:
        body: dict[str, dict[str, str]] = {"Text": {"Data": message.text_body}}
        if message.html_body:
            body["Html"] = {"Data": message.html_body}

        try:
            self._client.send_email(
                Source=settings.email_from,
                Destination={"ToAddresses": [message.to]},
                Message={
                    "Subject": {"Data": message.subject},
                    "Body": body,
                },
            )
        except (ConnectTimeoutError, ReadTimeoutError) as exc:
            raise EmailTimeoutError(f"SES send_email timed out: {exc}") from exc
        except (BotoCoreError, ClientError) as exc:
            raise EmailDeliveryError(f"SES send_email failed: {exc}") from exc


class ConsoleEmailClient(EmailClient):
    def send(self, message: EmailMessage) -> None:
        logger.info("Sending email (console fallback) -> %s: %s", message.to, message.subject)
        logger.debug("Email body: %s", message.text_body)


def get_email_client() -> EmailClient:
    backend = settings.email_backend.lower()
    if backend == "console":
        return ConsoleEmailClient()
    if backend == "ses" or settings.environment == "production":
        return SesEmailClient()

    # auto: try SES outside production, fall back to console when unusable
    try:
        client = SesEmailClient()
        client._client.get_account_sending_enabled()
        return client
    except (BotoCoreError, ClientError):  # pragma: no cover - fallback path
        logger.info("Falling back to ConsoleEmailClient")
        return ConsoleEmailClient()
