"""Chat relay — one chat turn from user message to streamed, persisted reply.

Turn lifecycle::

    RECEIVED ─► CONTEXT_LOADED ─► UPSTREAM_OPEN ─► STREAMING ─► COMPLETED
                                                           └──► ABORTED

``start_turn`` runs inside the request: it persists the user message,
assembles context and opens the upstream stream, so an upstream that
refuses the request still produces a plain JSON error. ``stream`` is the
SSE body; it forwards fragments as they arrive and always ends with
exactly one ``[DONE]`` frame unless the client has already gone away.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from enum import StrEnum
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from buddy.config import get_settings
from buddy.core.errors import ValidationFailed
from buddy.core.logging import get_logger
from buddy.core.sse import DONE_FRAME, format_sse, iter_text_deltas
from buddy.models.message import MessageRole
from buddy.services.context import ContextAssembler
from buddy.services.llm import CompletionClient, UpstreamStream
from buddy.services.thread import thread_service

logger = get_logger(__name__)

STREAM_INTERRUPTED_TEXT = "（流式中断）"

# Strong references to fire-and-forget persistence after a client disconnect
_background_tasks: set[asyncio.Task] = set()


class RelayState(StrEnum):
    RECEIVED = "received"
    CONTEXT_LOADED = "context_loaded"
    UPSTREAM_OPEN = "upstream_open"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ABORTED = "aborted"


@dataclass
class ReplyAccumulator:
    """Sink side of the pipeline: remembers everything forwarded so far."""

    parts: list[str] = field(default_factory=list)

    def append(self, fragment: str) -> None:
        self.parts.append(fragment)

    @property
    def text(self) -> str:
        return "".join(self.parts)


@dataclass
class ChatTurn:
    user_id: UUID
    thread_id: UUID
    upstream: UpstreamStream
    state: RelayState = RelayState.UPSTREAM_OPEN
    reply: ReplyAccumulator = field(default_factory=ReplyAccumulator)
    saved: bool = False
    save_task: asyncio.Task | None = None

    def transition(self, state: RelayState) -> None:
        logger.debug("chat_turn_state", thread_id=str(self.thread_id), old=self.state, new=state)
        self.state = state


class ChatRelay:
    def __init__(
        self,
        client: CompletionClient,
        session_maker: async_sessionmaker[AsyncSession],
        *,
        assembler: ContextAssembler | None = None,
    ) -> None:
        self._client = client
        self._session_maker = session_maker
        self._assembler = assembler or ContextAssembler()

    async def start_turn(self, user_id: UUID, message: str) -> ChatTurn:
        """Persist the user message, build the prompt and open the upstream stream.

        Raises ValidationFailed for an empty message and UpstreamFailure when
        the provider cannot be opened; nothing else is written in that case.
        """
        text = (message or "").strip()
        if not text:
            raise ValidationFailed("message required")
        logger.debug("chat_turn_state", new=RelayState.RECEIVED)

        async with self._session_maker() as db:
            thread = await thread_service.get_or_create_thread(db, user_id)
            user_message = await thread_service.append_message(
                db,
                user_id=user_id,
                thread_id=thread.id,
                role=MessageRole.USER,
                content=text,
            )
            await db.commit()
            thread_id = thread.id

            context = await self._assembler.assemble(db, user_id, thread_id)

        # The new message goes last, not in the middle of the history
        history = context.history(exclude_id=user_message.id)
        messages = [
            {"role": "system", "content": context.system_prompt},
            *history,
            {"role": "user", "content": text},
        ]
        logger.debug(
            "chat_turn_state",
            thread_id=str(thread_id),
            new=RelayState.CONTEXT_LOADED,
            history_messages=len(history),
        )

        settings = get_settings()
        upstream = await self._client.open_stream(
            messages,
            temperature=settings.llm_chat_temperature,
            top_p=settings.llm_chat_top_p,
        )
        return ChatTurn(user_id=user_id, thread_id=thread_id, upstream=upstream)

    async def stream(self, turn: ChatTurn) -> AsyncIterator[str]:
        """SSE body for an opened turn."""
        turn.transition(RelayState.STREAMING)
        try:
            try:
                async for delta in iter_text_deltas(turn.upstream.chunks()):
                    turn.reply.append(delta)
                    yield format_sse(delta)
            except Exception as e:
                turn.transition(RelayState.ABORTED)
                logger.warning(
                    "chat_stream_interrupted",
                    thread_id=str(turn.thread_id),
                    received_chars=len(turn.reply.text),
                    error=str(e),
                )
                yield format_sse(STREAM_INTERRUPTED_TEXT)
            else:
                turn.transition(RelayState.COMPLETED)

            # A disconnect during the commit must not cancel the insert
            await asyncio.shield(self._ensure_saved(turn))
            await turn.upstream.aclose()
            yield DONE_FRAME
        except (asyncio.CancelledError, GeneratorExit):
            # Client went away: stop writing, keep what was already received
            turn.transition(RelayState.ABORTED)
            logger.info(
                "chat_client_disconnected",
                thread_id=str(turn.thread_id),
                received_chars=len(turn.reply.text),
            )
            task = asyncio.get_running_loop().create_task(self._finish_detached(turn))
            _background_tasks.add(task)
            task.add_done_callback(_background_tasks.discard)
            raise

    def _ensure_saved(self, turn: ChatTurn) -> asyncio.Task:
        """Start the reply insert once; later callers await the same task."""
        if turn.save_task is None:
            partial = turn.state == RelayState.ABORTED
            turn.save_task = asyncio.get_running_loop().create_task(
                self._save_reply(turn, partial=partial)
            )
        return turn.save_task

    async def _save_reply(self, turn: ChatTurn, *, partial: bool = False) -> None:
        reply = turn.reply.text.strip()
        if not reply or turn.saved:
            return
        meta = {"partial": True} if partial else None
        try:
            async with self._session_maker() as db:
                await thread_service.append_message(
                    db,
                    user_id=turn.user_id,
                    thread_id=turn.thread_id,
                    role=MessageRole.ASSISTANT,
                    content=reply,
                    meta=meta,
                )
                await db.commit()
        except Exception:
            logger.exception("chat_reply_save_failed", thread_id=str(turn.thread_id))
            return
        turn.saved = True

        logger.info(
            "chat_turn_saved",
            thread_id=str(turn.thread_id),
            state=turn.state,
            reply_chars=len(reply),
        )

    async def _finish_detached(self, turn: ChatTurn) -> None:
        try:
            await self._ensure_saved(turn)
        finally:
            await turn.upstream.aclose()
