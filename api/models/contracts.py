from __future__ import annotations

import uuid
from enum import Enum

from sqlalchemy import (
    Column,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Integer,
    String,
    Uuid,
    text,
)
from sqlalchemy.sql import func

from .base import Base, JSONType


class ContractStatusEnum(str, Enum):
    PENDING = "pending"
    ANALYZING = "analyzing"
    ANALYZED = "analyzed"
    FAILED = "failed"


class Contract(Base):
    __tablename__ = "contracts"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(
        Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    filename = Column(String, nullable=False)
    content_type = Column(String, nullable=False)
    size_bytes = Column(Integer, nullable=False)
    file_hash = Column(String, nullable=True)
    storage_key = Column(String, nullable=False)
    storage_url = Column(String, nullable=True)
    status = Column(
        SAEnum(
            ContractStatusEnum,
            name="contract_status",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=ContractStatusEnum.PENDING,
        server_default=ContractStatusEnum.PENDING.value,
    )
    # written only on successful analysis; failures touch status/last_error
    analysis = Column(JSONType, nullable=True)
    last_error = Column(String, nullable=True)
    analyzed_at = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False, default=0, server_default=text("0"))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
