"""Owner-scoped persistence for contracts.

Every statement filters on (id, user_id). Mutations report whether a row
matched instead of raising, so callers decide what "nothing matched" means.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Sequence

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from ..models.contracts import Contract, ContractStatusEnum


def _now() -> datetime:
    return datetime.now(timezone.utc)


def create_contract(
    db: Session,
    *,
    user_id: uuid.UUID,
    filename: str,
    content_type: str,
    size_bytes: int,
    storage_key: str,
    storage_url: str | None = None,
    file_hash: str | None = None,
) -> Contract:
    contract = Contract(
        user_id=user_id,
        filename=filename,
        content_type=content_type,
        size_bytes=size_bytes,
        storage_key=storage_key,
        storage_url=storage_url,
        file_hash=file_hash,
        status=ContractStatusEnum.PENDING,
        version=0,
    )
    db.add(contract)
    db.flush()
    return contract


def get_contract(db: Session, contract_id: uuid.UUID, user_id: uuid.UUID) -> Contract | None:
    return db.execute(
        select(Contract).where(Contract.id == contract_id, Contract.user_id == user_id)
    ).scalar_one_or_none()


def list_contracts(db: Session, user_id: uuid.UUID) -> Sequence[Contract]:
    return (
        db.execute(
            select(Contract)
            .where(Contract.user_id == user_id)
            .order_by(Contract.created_at.desc())
        )
        .scalars()
        .all()
    )


def mark_analyzing(db: Session, contract_id: uuid.UUID, user_id: uuid.UUID) -> int | None:
    """Move a contract into ``analyzing`` and return its new version.

    The version bump is what lets a later write detect that another analysis
    started in the meantime.
    """
    result = db.execute(
        update(Contract)
        .where(Contract.id == contract_id, Contract.user_id == user_id)
        .values(status=ContractStatusEnum.ANALYZING, version=Contract.version + 1, updated_at=_now())
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        return None
    return db.execute(
        select(Contract.version).where(Contract.id == contract_id, Contract.user_id == user_id)
    ).scalar_one_or_none()


def record_analysis_success(
    db: Session,
    contract_id: uuid.UUID,
    user_id: uuid.UUID,
    *,
    analysis: dict[str, Any],
    expected_version: int,
) -> bool:
    now = _now()
    result = db.execute(
        update(Contract)
        .where(
            Contract.id == contract_id,
            Contract.user_id == user_id,
            Contract.version == expected_version,
        )
        .values(
            status=ContractStatusEnum.ANALYZED,
            analysis=analysis,
            last_error=None,
            analyzed_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    return (result.rowcount or 0) > 0


def record_analysis_failure(
    db: Session,
    contract_id: uuid.UUID,
    user_id: uuid.UUID,
    *,
    error: str,
    expected_version: int,
) -> bool:
    # no analysis column here: a failed run keeps the last good payload
    result = db.execute(
        update(Contract)
        .where(
            Contract.id == contract_id,
            Contract.user_id == user_id,
            Contract.version == expected_version,
        )
        .values(status=ContractStatusEnum.FAILED, last_error=error[:1000], updated_at=_now())
        .execution_options(synchronize_session=False)
    )
    return (result.rowcount or 0) > 0


def delete_contract(db: Session, contract_id: uuid.UUID, user_id: uuid.UUID) -> bool:
    result = db.execute(
        delete(Contract)
        .where(Contract.id == contract_id, Contract.user_id == user_id)
        .execution_options(synchronize_session=False)
    )
    return (result.rowcount or 0) > 0


def count_by_status(db: Session, user_id: uuid.UUID) -> dict[ContractStatusEnum, int]:
    rows = db.execute(
        select(Contract.status, func.count(Contract.id))
        .where(Contract.user_id == user_id)
        .group_by(Contract.status)
    ).all()
    return {status: int(count) for status, count in rows}
