from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from ..dependencies.auth import require_internal_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/internal", dependencies=[Depends(require_internal_token)])


@router.post("/process-notifications")
def process_notifications(request: Request) -> dict:
    """On-demand run of the same sweep the scheduler runs every interval."""
    sweeper = request.app.state.notification_sweeper
    try:
        stats = sweeper.run()
    except Exception as exc:
        logger.exception("Notification processing failed")
        raise HTTPException(status_code=500, detail="Failed to process notifications") from exc

    if stats is None:
        return {"message": "Notification sweep already in progress", "skipped": True}
    return {"message": "Notifications processed successfully", "stats": stats}
