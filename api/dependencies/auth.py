from __future__ import annotations

import secrets
from dataclasses import dataclass

from fastapi import Header, HTTPException, Request, status

from ..config import settings
from ..db.session import SessionLocal
from ..models import User, UserSession
from ..services.auth import AuthService


@dataclass
class AuthContext:
    user: User
    session: UserSession


def require_auth(request: Request) -> AuthContext:
    raw_token = request.cookies.get(settings.cookie_name)
    with SessionLocal() as db:
        row = AuthService(db).session_from_token(raw_token or "")
        if not row:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")

        session, user = row
        request.state.user_id = str(user.id)
        # detach objects before session closes
        db.expunge_all()
        return AuthContext(user=user, session=session)


def require_internal_token(x_internal_token: str | None = Header(default=None)) -> None:
    expected = settings.internal_api_token
    if not expected:
        return
    if not x_internal_token or not secrets.compare_digest(x_internal_token, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid internal token")
