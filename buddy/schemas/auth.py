"""Auth schemas — registration, login and the public user shape."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

USERNAME_PATTERN = r"^[a-zA-Z0-9_-]{3,24}$"


class RegisterRequest(BaseModel):
    """Create an account with an invite code."""

    username: str = Field(..., pattern=USERNAME_PATTERN)
    password: str = Field(..., min_length=6, max_length=72)
    invite_code: str = Field(..., min_length=4, max_length=64)


class LoginRequest(BaseModel):
    username: str = Field(..., pattern=USERNAME_PATTERN)
    password: str = Field(..., min_length=6, max_length=72)


class UserRead(BaseModel):
    id: UUID
    username: str
    role: str


class AuthResponse(BaseModel):
    """Issued on register and login. ``token`` is shown exactly once."""

    ok: bool = True
    user: UserRead
    token: str
    expires_at: datetime


class RegisterResponse(AuthResponse):
    invite_bypassed: bool = False


class MeResponse(BaseModel):
    ok: bool = True
    user: UserRead


class LogoutResponse(BaseModel):
    ok: bool = True
    revoked: bool = True
