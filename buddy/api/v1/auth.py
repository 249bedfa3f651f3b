"""Auth endpoints — register, login, logout and the current user."""

from fastapi import APIRouter

from buddy.deps import CurrentUser, DbSession
from buddy.schemas.auth import (
    AuthResponse,
    LoginRequest,
    LogoutResponse,
    MeResponse,
    RegisterRequest,
    RegisterResponse,
    UserRead,
)
from buddy.services.auth import account_service
from buddy.services.session import session_manager

router = APIRouter()


@router.post("/register", response_model=RegisterResponse)
async def register(data: RegisterRequest, db: DbSession) -> RegisterResponse:
    """Create an account from an invite code and sign it in."""
    result = await account_service.register(
        db,
        username=data.username,
        password=data.password,
        invite_code=data.invite_code,
    )
    return RegisterResponse(
        user=UserRead(id=result.user.id, username=result.user.username, role=result.user.role),
        token=result.session.token,
        expires_at=result.session.expires_at,
        invite_bypassed=result.invite_bypassed,
    )


@router.post("/login", response_model=AuthResponse)
async def login(data: LoginRequest, db: DbSession) -> AuthResponse:
    result = await account_service.login(db, username=data.username, password=data.password)
    return AuthResponse(
        user=UserRead(id=result.user.id, username=result.user.username, role=result.user.role),
        token=result.session.token,
        expires_at=result.session.expires_at,
    )


@router.post("/logout", response_model=LogoutResponse)
async def logout(user: CurrentUser, db: DbSession) -> LogoutResponse:
    """Revoke the presented token. Other sessions of the user stay valid."""
    await session_manager.revoke(db, user.token_hash)
    await db.commit()
    return LogoutResponse()


@router.get("/me", response_model=MeResponse)
async def me(user: CurrentUser) -> MeResponse:
    return MeResponse(user=UserRead(id=user.id, username=user.username, role=user.role))
