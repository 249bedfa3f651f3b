"""Session service — bearer token issuance, resolution and revocation."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from buddy.config import get_settings
from buddy.core.errors import Forbidden, Unauthenticated
from buddy.core.logging import get_logger
from buddy.core.security import generate_token, hash_token
from buddy.database import utcnow
from buddy.models.session import UserSession
from buddy.models.user import User, UserStatus

logger = get_logger(__name__)


@dataclass(frozen=True)
class IssuedSession:
    """Returned once at login/registration; the raw token is not stored."""

    token: str
    expires_at: datetime


@dataclass(frozen=True)
class ResolvedSession:
    user_id: UUID
    username: str
    role: str
    token_hash: str
    expires_at: datetime


class SessionManager:
    """Issues and validates opaque bearer tokens against the sessions table."""

    def __init__(self, ttl: timedelta | None = None) -> None:
        self._ttl = ttl

    @property
    def ttl(self) -> timedelta:
        return self._ttl or timedelta(days=get_settings().session_ttl_days)

    async def create(self, db: AsyncSession, user_id: UUID) -> IssuedSession:
        raw = generate_token()
        now = utcnow()
        expires_at = now + self.ttl
        db.add(
            UserSession(
                user_id=user_id,
                token_hash=hash_token(raw),
                created_at=now,
                last_seen_at=now,
                expires_at=expires_at,
            )
        )
        await db.flush()
        return IssuedSession(token=raw, expires_at=expires_at)

    async def resolve(self, db: AsyncSession, raw_token: str) -> ResolvedSession:
        """Map a presented token to its user.

        Unknown, revoked and expired tokens all raise Unauthenticated; a
        valid token owned by a disabled account raises Forbidden.
        """
        token_hash = hash_token(raw_token)
        result = await db.execute(
            select(UserSession, User)
            .join(User, User.id == UserSession.user_id)
            .where(UserSession.token_hash == token_hash)
        )
        row = result.one_or_none()
        if row is None:
            raise Unauthenticated("invalid session")

        session, user = row
        if session.revoked_at is not None:
            raise Unauthenticated("session revoked")
        if session.expires_at <= utcnow():
            raise Unauthenticated("session expired")
        if user.status != UserStatus.ACTIVE.value:
            raise Forbidden("user disabled")

        return ResolvedSession(
            user_id=user.id,
            username=user.username,
            role=user.role,
            token_hash=token_hash,
            expires_at=session.expires_at,
        )

    async def touch(self, session_maker: async_sessionmaker[AsyncSession], token_hash: str) -> None:
        """Best-effort last-seen update in its own transaction."""
        try:
            async with session_maker() as db:
                await db.execute(
                    update(UserSession)
                    .where(UserSession.token_hash == token_hash)
                    .values(last_seen_at=utcnow())
                )
                await db.commit()
        except Exception as e:
            logger.warning("session_touch_failed", error=str(e))

    async def revoke(self, db: AsyncSession, token_hash: str) -> bool:
        """Revoke a session. Returns False if it was already revoked or unknown."""
        result = await db.execute(
            update(UserSession)
            .where(UserSession.token_hash == token_hash)
            .where(UserSession.revoked_at.is_(None))
            .values(revoked_at=utcnow())
        )
        return result.rowcount == 1


# Singleton
session_manager = SessionManager()
