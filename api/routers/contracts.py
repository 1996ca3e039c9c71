from __future__ import annotations

import logging
import uuid
from typing import Any, Dict

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from sqlalchemy.orm import Session

from ..dependencies.auth import AuthContext, require_auth
from ..dependencies.db import get_db
from ..models.contracts import Contract, ContractStatusEnum
from ..services import contract_store
from ..services.analysis import ContractAnalysisService
from ..services.contract_extract import ContractExtractor, get_contract_extractor
from ..services.exceptions import (
    NotFoundError,
    PayloadTooLargeError,
    StorageError,
    ValidationError,
)
from ..services.intake import MAX_UPLOAD_BYTES, validate_upload
from ..services.storage import StorageService, get_storage_service

logger = logging.getLogger(__name__)

router = APIRouter()

READ_CHUNK_BYTES = 1024 * 1024


def get_analysis_service(
    db: Session = Depends(get_db),
    extractor: ContractExtractor = Depends(get_contract_extractor),
    storage: StorageService = Depends(get_storage_service),
) -> ContractAnalysisService:
    return ContractAnalysisService(db, extractor, storage)


def serialize_contract(contract: Contract) -> Dict[str, Any]:
    status = contract.status.value if isinstance(contract.status, ContractStatusEnum) else contract.status
    return {
        "id": str(contract.id),
        "user_id": str(contract.user_id),
        "filename": contract.filename,
        "content_type": contract.content_type,
        "size_bytes": contract.size_bytes,
        "status": status,
        "analysis": contract.analysis,
        "last_error": contract.last_error,
        "analyzed_at": contract.analyzed_at.isoformat() if contract.analyzed_at else None,
        "created_at": contract.created_at.isoformat() if contract.created_at else None,
        "updated_at": contract.updated_at.isoformat() if contract.updated_at else None,
    }


def _parse_contract_id(contract_id: str) -> uuid.UUID:
    try:
        return uuid.UUID(contract_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid contract id") from exc


def _read_upload(file: UploadFile) -> bytes:
    chunks: list[bytes] = []
    total_bytes = 0
    try:
        while True:
            chunk = file.file.read(READ_CHUNK_BYTES)
            if not chunk:
                break
            total_bytes += len(chunk)
            if total_bytes > MAX_UPLOAD_BYTES:
                raise PayloadTooLargeError("File too large.")
            chunks.append(chunk)
    finally:
        file.file.close()
    return b"".join(chunks)


@router.post("/contracts/upload")
def upload_contract(
    file: UploadFile | None = File(default=None),
    context: AuthContext = Depends(require_auth),
    service: ContractAnalysisService = Depends(get_analysis_service),
):
    if file is None:
        raise HTTPException(status_code=400, detail="No file uploaded")

    try:
        upload = validate_upload(_read_upload(file), file.filename, file.content_type)
    except PayloadTooLargeError as exc:
        raise HTTPException(status_code=413, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    try:
        contract_id = service.analyze_new(upload, context.user.id)
        contract = service.get(contract_id, context.user.id)
    except StorageError as exc:
        logger.exception("Contract upload failed")
        raise HTTPException(status_code=500, detail="Failed to store contract") from exc
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail="Contract not found") from exc

    if contract.status == ContractStatusEnum.FAILED:
        raise HTTPException(
            status_code=500,
            detail={
                "message": "Failed to analyze contract",
                "contractId": str(contract_id),
                "status": ContractStatusEnum.FAILED.value,
            },
        )

    status = contract.status.value if isinstance(contract.status, ContractStatusEnum) else contract.status
    return {
        "success": True,
        "contractId": str(contract_id),
        "status": status,
        "message": "Contract analyzed successfully",
    }


@router.get("/contracts")
def list_contracts(
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    return [serialize_contract(contract) for contract in contract_store.list_contracts(db, context.user.id)]


@router.get("/contracts/{contract_id}")
def get_contract(
    contract_id: str,
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    contract = contract_store.get_contract(db, _parse_contract_id(contract_id), context.user.id)
    if contract is None:
        raise HTTPException(status_code=404, detail="Contract not found")
    return serialize_contract(contract)


@router.post("/contracts/{contract_id}/reanalyze")
def reanalyze_contract(
    contract_id: str,
    context: AuthContext = Depends(require_auth),
    service: ContractAnalysisService = Depends(get_analysis_service),
):
    contract_uuid = _parse_contract_id(contract_id)
    try:
        success = service.reanalyze(contract_uuid, context.user.id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail="Contract not found") from exc
    except StorageError as exc:
        logger.exception("Contract re-analysis failed: contract=%s", contract_uuid)
        raise HTTPException(status_code=500, detail="Failed to re-analyze contract") from exc

    if not success:
        raise HTTPException(status_code=500, detail="Failed to re-analyze contract")
    return {"message": "Contract re-analyzed successfully"}


@router.delete("/contracts/{contract_id}")
def delete_contract(
    contract_id: str,
    context: AuthContext = Depends(require_auth),
    service: ContractAnalysisService = Depends(get_analysis_service),
):
    contract_uuid = _parse_contract_id(contract_id)
    try:
        deleted = service.delete(contract_uuid, context.user.id)
    except StorageError as exc:
        logger.exception("Contract deletion failed: contract=%s", contract_uuid)
        raise HTTPException(status_code=500, detail="Failed to delete contract") from exc

    if not deleted:
        raise HTTPException(status_code=404, detail="Contract not found")
    return {"message": "Contract deleted successfully"}
