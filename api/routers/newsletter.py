from __future__ import annotations

import logging
from typing import Any

import pydantic
from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, EmailStr
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..dependencies.db import get_db
from ..services.email import EmailClient, get_email_client
from ..services.newsletter import send_confirmation, subscribe, unsubscribe

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/newsletter", tags=["newsletter"])


class NewsletterRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    email: EmailStr


def _parse_request(payload: Any) -> NewsletterRequest:
    try:
        return NewsletterRequest.model_validate(payload)
    except pydantic.ValidationError as exc:
        raise HTTPException(status_code=400, detail="Invalid email address") from exc


@router.post("/subscribe")
def subscribe_newsletter(
    payload: Any = Body(default=None),
    db: Session = Depends(get_db),
    email_client: EmailClient = Depends(get_email_client),
) -> dict:
    request = _parse_request(payload)
    try:
        subscribe(db, request.email)
        send_confirmation(db, request.email, email_client)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Newsletter subscription failed")
        raise HTTPException(status_code=500, detail="Failed to subscribe to newsletter") from exc
    return {"message": "Successfully subscribed to newsletter"}


@router.post("/unsubscribe")
def unsubscribe_newsletter(payload: Any = Body(default=None), db: Session = Depends(get_db)) -> dict:
    request = _parse_request(payload)
    try:
        found = unsubscribe(db, request.email)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Newsletter unsubscription failed")
        raise HTTPException(status_code=500, detail="Failed to unsubscribe from newsletter") from exc
    if not found:
        raise HTTPException(status_code=404, detail="Email not found")
    return {"message": "Successfully unsubscribed from newsletter"}
