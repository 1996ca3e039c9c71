from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..dependencies.auth import AuthContext, require_auth
from ..dependencies.db import get_db
from ..services.analysis import contract_stats
from ..services.exceptions import StorageError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/dashboard")


@router.get("/stats")
def dashboard_stats(
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
) -> dict[str, int]:
    try:
        return contract_stats(db, context.user.id).as_dict()
    except StorageError as exc:
        logger.exception("Error fetching dashboard stats")
        raise HTTPException(status_code=500, detail="Failed to fetch dashboard stats") from exc
