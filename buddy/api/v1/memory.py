"""Memory endpoints — let a user inspect and prune what the companion remembers."""

from fastapi import APIRouter

from buddy.deps import CurrentUser, DbSession
from buddy.schemas.memory import (
    DeleteResponse,
    MemoryEventDelete,
    MemoryEventList,
    MemoryEventRead,
    MemoryFactDelete,
    MemoryFactList,
    MemoryFactRead,
)
from buddy.services.memory import memory_service

router = APIRouter()


@router.get("/profile", response_model=MemoryFactList)
async def list_profile(user: CurrentUser, db: DbSession) -> MemoryFactList:
    facts = await memory_service.list_profile(db, user.id)
    return MemoryFactList(items=[MemoryFactRead.model_validate(f) for f in facts])


@router.post("/profile/delete", response_model=DeleteResponse)
async def delete_profile_fact(data: MemoryFactDelete, user: CurrentUser, db: DbSession) -> DeleteResponse:
    deleted = await memory_service.delete_profile_fact(db, user.id, data.key)
    await db.commit()
    return DeleteResponse(deleted=deleted)


@router.get("/events", response_model=MemoryEventList)
async def list_events(user: CurrentUser, db: DbSession, limit: int = 100) -> MemoryEventList:
    events = await memory_service.list_events(db, user.id, limit=max(1, min(limit, 500)))
    return MemoryEventList(items=[MemoryEventRead.model_validate(e) for e in events])


@router.post("/events/delete", response_model=DeleteResponse)
async def delete_event(data: MemoryEventDelete, user: CurrentUser, db: DbSession) -> DeleteResponse:
    deleted = await memory_service.delete_event(db, user.id, data.id)
    await db.commit()
    return DeleteResponse(deleted=deleted)
