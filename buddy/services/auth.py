"""Account service — invite-gated registration and password login."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from buddy.config import get_settings
from buddy.core.errors import Conflict, Forbidden, Unauthenticated
from buddy.core.logging import get_logger
from buddy.core.security import hash_password, verify_password
from buddy.database import utcnow
from buddy.models.companion import CompanionProfile
from buddy.models.invite import Invite, InviteStatus
from buddy.models.relationship import RelationshipState
from buddy.models.thread import Thread
from buddy.models.user import User, UserRole, UserStatus
from buddy.services.session import IssuedSession, SessionManager, session_manager

logger = get_logger(__name__)


@dataclass(frozen=True)
class AuthResult:
    user: User
    session: IssuedSession
    invite_bypassed: bool = False


class AccountService:
    def __init__(self, sessions: SessionManager | None = None) -> None:
        self._sessions = sessions or session_manager

    async def register(
        self,
        db: AsyncSession,
        *,
        username: str,
        password: str,
        invite_code: str,
    ) -> AuthResult:
        """Create an account and everything a new user starts with.

        The invite is consumed with a conditional update after the user row
        exists. Losing that race leaves the new account disabled and raises
        ``invite_race_failed``.
        """
        settings = get_settings()

        taken = await db.scalar(select(User.id).where(User.username == username))
        if taken is not None:
            raise Conflict("username taken")

        bypassed = bool(settings.master_invite_code) and invite_code == settings.master_invite_code
        if not bypassed:
            invite = await db.get(Invite, invite_code)
            if invite is None:
                raise Forbidden(kind="invite_not_found")
            if invite.status != InviteStatus.ACTIVE.value:
                raise Forbidden(kind="invite_not_active")

        user_count = await db.scalar(select(func.count()).select_from(User))
        user = User(
            username=username,
            password_hash=hash_password(password, settings.password_hash_iterations),
            role=(UserRole.ADMIN if not user_count else UserRole.USER).value,
            status=UserStatus.ACTIVE.value,
        )
        db.add(user)
        try:
            await db.flush()
        except IntegrityError as e:
            await db.rollback()
            raise Conflict("username taken") from e

        db.add_all([
            CompanionProfile(user_id=user.id),
            RelationshipState(user_id=user.id),
            Thread(user_id=user.id),
        ])
        await db.flush()

        if not bypassed:
            result = await db.execute(
                update(Invite)
                .where(Invite.code == invite_code)
                .where(Invite.status == InviteStatus.ACTIVE.value)
                .values(
                    status=InviteStatus.USED.value,
                    used_by_user_id=user.id,
                    used_at=utcnow(),
                )
            )
            if result.rowcount != 1:
                user.status = UserStatus.DISABLED.value
                await db.commit()
                logger.warning("invite_race_failed", user_id=str(user.id))
                raise Conflict(kind="invite_race_failed")

        issued = await self._sessions.create(db, user.id)
        await db.commit()

        logger.info(
            "user_registered",
            user_id=str(user.id),
            role=user.role,
            invite_bypassed=bypassed,
        )
        return AuthResult(user=user, session=issued, invite_bypassed=bypassed)

    async def login(self, db: AsyncSession, *, username: str, password: str) -> AuthResult:
        user = await db.scalar(select(User).where(User.username == username))
        if user is None or not verify_password(password, user.password_hash):
            raise Unauthenticated("invalid credentials")
        if user.status != UserStatus.ACTIVE.value:
            raise Forbidden("user disabled")

        issued = await self._sessions.create(db, user.id)
        await db.commit()
        logger.info("user_logged_in", user_id=str(user.id))
        return AuthResult(user=user, session=issued)


# Singleton
account_service = AccountService()
