"""Thread schemas — transcript reads."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel


class MessageRead(BaseModel):
    id: int
    role: str
    content: str
    meta: dict | None = None
    created_at: datetime


class ThreadMessagesResponse(BaseModel):
    ok: bool = True
    thread_id: UUID
    messages: list[MessageRead]


class ThreadClearResponse(BaseModel):
    ok: bool = True
    deleted: int
