from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models.contracts import Contract, ContractStatusEnum
from ..models.events import Event
from ..models.users import User
from . import contract_store
from .contract_extract import ContractExtractor
from .exceptions import ExternalServiceError, ExtractorTimeoutError, NotFoundError, StorageError
from .intake import ValidatedUpload
from .metrics import record_analysis, record_contract_uploaded
from .notifications import schedule_analysis_notifications
from .storage import StorageService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContractStats:
    total: int
    analyzed: int
    pending: int
    failed: int

    def as_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "analyzed": self.analyzed,
            "pending": self.pending,
            "failed": self.failed,
        }


def contract_stats(db: Session, user_id: uuid.UUID) -> ContractStats:
    """Dashboard counts for one owner; ``analyzing`` rows count as pending."""
    try:
        counts = contract_store.count_by_status(db, user_id)
    except SQLAlchemyError as exc:
        raise StorageError(f"Failed to load contract stats: {exc}") from exc
    analyzed = counts.get(ContractStatusEnum.ANALYZED, 0)
    failed = counts.get(ContractStatusEnum.FAILED, 0)
    pending = counts.get(ContractStatusEnum.PENDING, 0) + counts.get(ContractStatusEnum.ANALYZING, 0)
    return ContractStats(total=analyzed + failed + pending, analyzed=analyzed, pending=pending, failed=failed)


@dataclass(frozen=True)
class _ExtractionOutcome:
    analysis: dict[str, Any] | None
    error: str | None


class ContractAnalysisService:
    """Drives contracts through pending -> analyzing -> analyzed | failed.

    Extractor failures never escape this class: they are written to the
    contract as ``failed`` plus ``last_error``. Storage failures do escape,
    as StorageError. Only such a storage fault, hit while recording the
    extractor outcome, can leave a row in ``analyzing``.
    """

    def __init__(
        self,
        db: Session,
        extractor: ContractExtractor,
        storage: StorageService,
        *,
        notify: bool = True,
    ) -> None:
        self.db = db
        self.extractor = extractor
        self.storage = storage
        self.notify = notify

    # --- helpers -------------------------------------------------------
    def _commit(self, action: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageError(f"Failed to {action}: {exc}") from exc

    def _run_extractor(self, contract_id: uuid.UUID, content: bytes, filename: str, content_type: str, trigger: str) -> _ExtractionOutcome:
        started = time.perf_counter()
        try:
            result = self.extractor.extract(content, filename, content_type)
        except ExtractorTimeoutError as exc:
            logger.warning("Extractor timed out: contract=%s trigger=%s", contract_id, trigger)
            record_analysis(trigger, "timeout")
            return _ExtractionOutcome(analysis=None, error=str(exc) or "Extractor timed out")
        except ExternalServiceError as exc:
            logger.warning("Extractor failed: contract=%s trigger=%s error=%s", contract_id, trigger, exc)
            record_analysis(trigger, "failed")
            return _ExtractionOutcome(analysis=None, error=str(exc) or "Extractor failed")
        except Exception as exc:
            logger.exception("Unexpected extractor failure: contract=%s trigger=%s", contract_id, trigger)
            record_analysis(trigger, "failed")
            return _ExtractionOutcome(analysis=None, error=f"Unexpected failure: {exc}")

        record_analysis(trigger, "success")
        logger.info(
            "Extractor finished: contract=%s trigger=%s duration_ms=%s",
            contract_id,
            trigger,
            int((time.perf_counter() - started) * 1000),
        )
        return _ExtractionOutcome(analysis=result.model_dump(mode="json"), error=None)

    def _record_outcome(
        self,
        contract_id: uuid.UUID,
        user_id: uuid.UUID,
        version: int,
        outcome: _ExtractionOutcome,
        trigger: str,
    ) -> bool:
        """Persist the extractor outcome; False when the row moved on or vanished."""
        try:
            if outcome.analysis is not None:
                written = contract_store.record_analysis_success(
                    self.db, contract_id, user_id, analysis=outcome.analysis, expected_version=version
                )
            else:
                written = contract_store.record_analysis_failure(
                    self.db, contract_id, user_id, error=outcome.error or "Analysis failed", expected_version=version
                )
            if written:
                self.db.add(
                    Event(
                        user_id=user_id,
                        contract_id=contract_id,
                        type="analysis_completed" if outcome.analysis is not None else "analysis_failed",
                        data={"trigger": trigger, "version": version, "error": outcome.error},
                    )
                )
                if outcome.analysis is not None and self.notify:
                    self._schedule_notifications(contract_id, user_id, outcome.analysis, notify_ready=trigger == "upload")
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageError(f"Failed to record analysis for {contract_id}: {exc}") from exc

        self._commit("record analysis outcome")
        if not written:
            logger.info(
                "Analysis result dropped, contract deleted or re-analyzed concurrently: contract=%s version=%s",
                contract_id,
                version,
            )
        return written

    def _schedule_notifications(
        self, contract_id: uuid.UUID, user_id: uuid.UUID, analysis: dict[str, Any], *, notify_ready: bool
    ) -> None:
        user = self.db.get(User, user_id)
        contract = contract_store.get_contract(self.db, contract_id, user_id)
        if user is None or contract is None or not user.email:
            return
        schedule_analysis_notifications(
            self.db, user=user, contract=contract, analysis=analysis, notify_ready=notify_ready
        )

    # --- operations ----------------------------------------------------
    def analyze_new(self, upload: ValidatedUpload, user_id: uuid.UUID) -> uuid.UUID:
        """Store, register and analyze an accepted upload.

        Returns the contract id whether or not the extractor succeeded. Raises
        StorageError (and leaves no contract behind) if the file or the row
        cannot be persisted.
        """
        stored = self.storage.upload_bytes(user_id, upload.content, upload.filename, upload.content_type)

        try:
            contract = contract_store.create_contract(
                self.db,
                user_id=user_id,
                filename=upload.filename,
                content_type=upload.content_type,
                size_bytes=upload.size_bytes,
                storage_key=stored.key,
                storage_url=stored.storage_url,
                file_hash=upload.file_hash,
            )
            contract_id = contract.id
            self.db.add(
                Event(
                    user_id=user_id,
                    contract_id=contract_id,
                    type="upload",
                    data={
                        "filename": upload.filename,
                        "bytes": upload.size_bytes,
                        "content_type": upload.content_type,
                        "storage_key": stored.key,
                        "file_hash": upload.file_hash,
                    },
                )
            )
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            try:
                self.storage.delete(stored.key)
            except StorageError:
                logger.warning("Failed to delete stored file after storage error", exc_info=True)
            raise StorageError(f"Failed to create contract: {exc}") from exc

        record_contract_uploaded()

        try:
            version = contract_store.mark_analyzing(self.db, contract_id, user_id)
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageError(f"Failed to start analysis for {contract_id}: {exc}") from exc
        self._commit("start analysis")
        if version is None:
            # deleted between creation and analysis start
            return contract_id

        outcome = self._run_extractor(contract_id, upload.content, upload.filename, upload.content_type, "upload")
        self._record_outcome(contract_id, user_id, version, outcome, "upload")
        return contract_id

    def reanalyze(self, contract_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        """Re-run the extractor on the stored file.

        Raises NotFoundError if the contract does not exist for this owner.
        Returns False if the extractor failed (the previous analysis stays in
        place) or if the result was superseded by a concurrent delete or
        re-analysis.
        """
        contract = contract_store.get_contract(self.db, contract_id, user_id)
        if contract is None:
            raise NotFoundError("Contract not found")

        storage_key = contract.storage_key
        filename = contract.filename
        content_type = contract.content_type
        content = self.storage.read_bytes(storage_key)

        try:
            version = contract_store.mark_analyzing(self.db, contract_id, user_id)
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageError(f"Failed to start re-analysis for {contract_id}: {exc}") from exc
        self._commit("start re-analysis")
        if version is None:
            return False

        outcome = self._run_extractor(contract_id, content, filename, content_type, "reanalyze")
        written = self._record_outcome(contract_id, user_id, version, outcome, "reanalyze")
        return written and outcome.analysis is not None

    def get(self, contract_id: uuid.UUID, user_id: uuid.UUID) -> Contract:
        contract = contract_store.get_contract(self.db, contract_id, user_id)
        if contract is None:
            raise NotFoundError("Contract not found")
        return contract

    def delete(self, contract_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        """Hard delete. False when nothing matched (already gone or not owned)."""
        contract = contract_store.get_contract(self.db, contract_id, user_id)
        if contract is None:
            return False
        storage_key = contract.storage_key
        try:
            deleted = contract_store.delete_contract(self.db, contract_id, user_id)
            if deleted:
                self.db.add(
                    Event(user_id=user_id, contract_id=contract_id, type="contract_deleted", data={"storage_key": storage_key})
                )
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageError(f"Failed to delete contract {contract_id}: {exc}") from exc

        if deleted:
            try:
                self.storage.delete(storage_key)
            except StorageError:
                logger.warning("Failed to delete stored file for contract %s", contract_id, exc_info=True)
        return deleted

    def stats(self, user_id: uuid.UUID) -> ContractStats:
        return contract_stats(self.db, user_id)
