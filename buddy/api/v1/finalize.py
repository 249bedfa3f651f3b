"""Finalize endpoint — consolidate recent conversation into memory and relationship."""

from fastapi import APIRouter

from buddy.deps import Completion, CurrentUser, DbSession
from buddy.schemas.finalize import FinalizeResponse
from buddy.services.finalize import FinalizeEngine
from buddy.services.thread import thread_service

router = APIRouter()


@router.post("", response_model=FinalizeResponse)
async def finalize(user: CurrentUser, db: DbSession, client: Completion) -> FinalizeResponse:
    thread = await thread_service.get_or_create_thread(db, user.id)
    result = await FinalizeEngine(client).finalize(db, user.id, thread.id)
    return FinalizeResponse.model_validate(result.to_dict())
