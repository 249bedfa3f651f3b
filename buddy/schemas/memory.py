"""Memory schemas — profile facts and memory events as exposed to their owner."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class MemoryFactRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    key: str
    value: str
    confidence: float
    importance: int
    updated_at: datetime


class MemoryEventRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    title: str | None
    summary: str
    importance: int
    happened_at: datetime


class MemoryFactList(BaseModel):
    ok: bool = True
    items: list[MemoryFactRead]


class MemoryEventList(BaseModel):
    ok: bool = True
    items: list[MemoryEventRead]


class MemoryFactDelete(BaseModel):
    key: str = Field(..., min_length=1, max_length=120)


class MemoryEventDelete(BaseModel):
    id: UUID


class DeleteResponse(BaseModel):
    ok: bool = True
    deleted: bool
