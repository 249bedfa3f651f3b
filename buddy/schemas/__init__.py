"""Pydantic schemas for API request/response validation."""

from buddy.schemas.auth import (
    AuthResponse,
    LoginRequest,
    LogoutResponse,
    MeResponse,
    RegisterRequest,
    RegisterResponse,
    UserRead,
)
from buddy.schemas.chat import ChatRequest
from buddy.schemas.finalize import ExtractionResult, FinalizeResponse
from buddy.schemas.memory import (
    DeleteResponse,
    MemoryEventDelete,
    MemoryEventList,
    MemoryEventRead,
    MemoryFactDelete,
    MemoryFactList,
    MemoryFactRead,
)
from buddy.schemas.thread import MessageRead, ThreadClearResponse, ThreadMessagesResponse

__all__ = [
    "AuthResponse",
    "LoginRequest",
    "LogoutResponse",
    "MeResponse",
    "RegisterRequest",
    "RegisterResponse",
    "UserRead",
    "ChatRequest",
    "ExtractionResult",
    "FinalizeResponse",
    "DeleteResponse",
    "MemoryEventDelete",
    "MemoryEventList",
    "MemoryEventRead",
    "MemoryFactDelete",
    "MemoryFactList",
    "MemoryFactRead",
    "MessageRead",
    "ThreadClearResponse",
    "ThreadMessagesResponse",
]
