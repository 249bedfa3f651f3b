"""Thread endpoints — read and clear the caller's transcript."""

from fastapi import APIRouter

from buddy.deps import CurrentUser, DbSession
from buddy.schemas.thread import MessageRead, ThreadClearResponse, ThreadMessagesResponse
from buddy.services.thread import thread_service

router = APIRouter()

MESSAGES_DEFAULT_LIMIT = 80
MESSAGES_MIN_LIMIT = 10
MESSAGES_MAX_LIMIT = 200


def clamp_limit(limit: int | None) -> int:
    if limit is None:
        return MESSAGES_DEFAULT_LIMIT
    return max(MESSAGES_MIN_LIMIT, min(MESSAGES_MAX_LIMIT, limit))


@router.get("/messages", response_model=ThreadMessagesResponse)
async def list_messages(
    user: CurrentUser,
    db: DbSession,
    limit: int | None = None,
) -> ThreadMessagesResponse:
    """Most recent messages of the caller's thread, oldest first."""
    thread = await thread_service.get_or_create_thread(db, user.id)
    await db.commit()
    messages = await thread_service.recent_messages(db, user.id, thread.id, clamp_limit(limit))
    return ThreadMessagesResponse(
        thread_id=thread.id,
        messages=[
            MessageRead(
                id=m.id,
                role=m.role,
                content=m.content,
                meta=m.meta_json,
                created_at=m.created_at,
            )
            for m in messages
        ],
    )


@router.post("/clear", response_model=ThreadClearResponse)
async def clear_thread(user: CurrentUser, db: DbSession) -> ThreadClearResponse:
    thread = await thread_service.get_or_create_thread(db, user.id)
    deleted = await thread_service.clear(db, user.id, thread.id)
    await db.commit()
    return ThreadClearResponse(deleted=deleted)
