"""Chat endpoint — one streamed companion turn over SSE."""

from fastapi import APIRouter
from fastapi.responses import StreamingResponse

from buddy.deps import Completion, CurrentUser, SessionMaker
from buddy.schemas.chat import ChatRequest
from buddy.services.relay import ChatRelay

router = APIRouter()


@router.post("")
async def chat(
    data: ChatRequest,
    user: CurrentUser,
    client: Completion,
    session_maker: SessionMaker,
) -> StreamingResponse:
    """Stream the companion's reply as ``data:`` frames ending with ``[DONE]``.

    Flow:
    1. Persist the user message and assemble context
    2. Open the upstream stream (failure here is a JSON 500)
    3. Forward fragments, persist the reply, send the sentinel
    """
    relay = ChatRelay(client, session_maker)
    turn = await relay.start_turn(user.id, data.message)

    return StreamingResponse(
        relay.stream(turn),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
