from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
def health() -> dict[str, bool]:
    return {"ok": True}


@router.get("/healthz")
def healthz(request: Request) -> dict[str, object]:
    sweeper = getattr(request.app.state, "notification_sweeper", None)
    return {"status": "ok", "notification_sweep": bool(sweeper and sweeper.running)}
