"""FastAPI dependencies — database sessions, the upstream client and bearer auth."""

from dataclasses import dataclass
from typing import Annotated
from uuid import UUID

from fastapi import BackgroundTasks, Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from buddy.core.errors import Forbidden, Unauthenticated
from buddy.core.logging import user_id_var
from buddy.database import get_db, get_session_maker
from buddy.models.user import UserRole
from buddy.services.llm import CompletionClient, get_completion_client
from buddy.services.session import session_manager

bearer_scheme = HTTPBearer(auto_error=False)

DbSession = Annotated[AsyncSession, Depends(get_db)]
SessionMaker = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_maker)]
Completion = Annotated[CompletionClient, Depends(get_completion_client)]


@dataclass(frozen=True)
class AuthUser:
    """The caller behind a valid bearer token."""

    id: UUID
    username: str
    role: str
    token_hash: str

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value


async def get_current_user(
    db: DbSession,
    session_maker: SessionMaker,
    background_tasks: BackgroundTasks,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> AuthUser:
    if credentials is None or not credentials.credentials:
        raise Unauthenticated("missing bearer token")

    resolved = await session_manager.resolve(db, credentials.credentials)
    user_id_var.set(str(resolved.user_id))
    background_tasks.add_task(session_manager.touch, session_maker, resolved.token_hash)

    return AuthUser(
        id=resolved.user_id,
        username=resolved.username,
        role=resolved.role,
        token_hash=resolved.token_hash,
    )


CurrentUser = Annotated[AuthUser, Depends(get_current_user)]


async def require_admin(user: CurrentUser) -> AuthUser:
    if not user.is_admin:
        raise Forbidden("admin only")
    return user


AdminUser = Annotated[AuthUser, Depends(require_admin)]
