from __future__ import annotations

import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    false,
    text,
)
from sqlalchemy.sql import func

from .base import Base


class EmailNotification(Base):
    __tablename__ = "email_notifications"
    __table_args__ = (
        CheckConstraint("NOT sent OR sent_at IS NOT NULL", name="ck_email_notifications_sent_at"),
        Index("ix_email_notifications_due", "sent", "scheduled_for"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(
        Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    contract_id = Column(
        Uuid(as_uuid=True), ForeignKey("contracts.id", ondelete="SET NULL"), nullable=True
    )
    kind = Column(String, nullable=False)
    recipient_email = Column(String, nullable=False)
    subject = Column(String, nullable=False)
    text_body = Column(Text, nullable=False)
    html_body = Column(Text, nullable=True)
    scheduled_for = Column(DateTime(timezone=True), nullable=False)
    sent = Column(Boolean, nullable=False, default=False, server_default=false())
    sent_at = Column(DateTime(timezone=True), nullable=True)
    attempts = Column(Integer, nullable=False, default=0, server_default=text("0"))
    last_error = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
