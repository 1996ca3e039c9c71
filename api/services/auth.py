from __future__ import annotations

import hashlib
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..config import settings
from ..models import User, UserSession

logger = logging.getLogger(__name__)


class AuthError(Exception):
    pass


class AuthService:
    """Session verification against the ``user_sessions`` table.

    Login itself happens in the identity provider; this service only mints
    and resolves opaque session tokens.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    @staticmethod
    def hash_token(raw_token: str) -> str:
        return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()

    def get_or_create_user(self, email: str, preferred_locale: str = "en", full_name: Optional[str] = None) -> User:
        normalized_email = email.strip().lower()
        if not normalized_email:
            raise AuthError("Email required")

        user = self.db.execute(select(User).where(User.email == normalized_email)).scalar_one_or_none()
        if user is None:
            user = User(email=normalized_email, preferred_locale=preferred_locale or "en", full_name=full_name)
            self.db.add(user)
            self.db.flush()
            logger.info("user_created user_id=%s", user.id)
        return user

    def create_session(self, user: User, user_agent: Optional[str] = None) -> str:
        raw_token = secrets.token_urlsafe(32)
        self.db.add(
            UserSession(
                user_id=user.id,
                session_token_hash=self.hash_token(raw_token),
                user_agent=user_agent,
                expires_at=datetime.now(timezone.utc) + timedelta(hours=settings.session_ttl_hours),
            )
        )
        self.db.flush()
        return raw_token

    def session_from_token(self, raw_token: str) -> Optional[tuple[UserSession, User]]:
        if not raw_token:
            return None

        row = self.db.execute(
            select(UserSession, User)
            .join(User, User.id == UserSession.user_id)
            .where(
                UserSession.session_token_hash == self.hash_token(raw_token),
                UserSession.revoked_at.is_(None),
                User.is_active.is_(True),
            )
        ).first()
        if row is None:
            return None

        session, user = row
        expires_at = session.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        if expires_at <= datetime.now(timezone.utc):
            return None
        return session, user
