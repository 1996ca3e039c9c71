import uuid

from sqlalchemy import Column, DateTime, ForeignKey, String, Uuid
from sqlalchemy.sql import func

from .base import Base, JSONType


class Event(Base):
    __tablename__ = "events"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(
        Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True
    )
    # plain reference: audit rows outlive hard-deleted contracts
    contract_id = Column(Uuid(as_uuid=True), nullable=True, index=True)
    notification_id = Column(Uuid(as_uuid=True), nullable=True)
    type = Column(String, nullable=False)  # "upload", "analysis_completed", "analysis_failed", "notification_sent"
    data = Column(JSONType, nullable=False, default=dict)
    at = Column(DateTime(timezone=True), server_default=func.now())
