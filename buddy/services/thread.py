"""Thread service — thread resolution and the append-only transcript."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from buddy.database import upsert_insert
from buddy.models.message import Message, MessageRole
from buddy.models.thread import Thread

THREAD_CLEARED_MARKER = "（会话已清空）"


class ThreadService:
    """Resolves a user's conversation thread and reads/writes its messages.

    Today every user has exactly one thread; callers only ever ask for
    ``get_or_create_thread`` so the resolution strategy can change without
    touching them.
    """

    async def get_thread(self, db: AsyncSession, user_id: UUID) -> Thread | None:
        result = await db.execute(select(Thread).where(Thread.user_id == user_id))
        return result.scalar_one_or_none()

    async def get_or_create_thread(self, db: AsyncSession, user_id: UUID) -> Thread:
        """Get or lazily create the user's thread (race-safe upsert)."""
        thread = await self.get_thread(db, user_id)
        if thread:
            return thread

        stmt = (
            upsert_insert(db, Thread)
            .values(user_id=user_id)
            .on_conflict_do_nothing(index_elements=["user_id"])
            .returning(Thread)
        )
        result = await db.execute(stmt)
        thread = result.scalar_one_or_none()

        if not thread:
            thread = await self.get_thread(db, user_id)

        return thread  # type: ignore[return-value]

    # ── Messages ─────────────────────────────────────────────────

    async def append_message(
        self,
        db: AsyncSession,
        *,
        user_id: UUID,
        thread_id: UUID,
        role: MessageRole | str,
        content: str,
        meta: dict | None = None,
    ) -> Message:
        message = Message(
            user_id=user_id,
            thread_id=thread_id,
            role=str(role),
            content=content,
            meta_json=meta,
        )
        db.add(message)
        await db.flush()
        return message

    async def recent_messages(
        self,
        db: AsyncSession,
        user_id: UUID,
        thread_id: UUID,
        limit: int,
    ) -> list[Message]:
        """The newest ``limit`` messages, returned oldest-first."""
        result = await db.execute(
            select(Message)
            .where(Message.user_id == user_id)
            .where(Message.thread_id == thread_id)
            .order_by(Message.created_at.desc(), Message.id.desc())
            .limit(limit)
        )
        return list(reversed(result.scalars().all()))

    async def clear(self, db: AsyncSession, user_id: UUID, thread_id: UUID) -> int:
        """Delete the thread's messages and leave a system marker behind."""
        result = await db.execute(
            delete(Message)
            .where(Message.user_id == user_id)
            .where(Message.thread_id == thread_id)
        )
        await self.append_message(
            db,
            user_id=user_id,
            thread_id=thread_id,
            role=MessageRole.SYSTEM,
            content=THREAD_CLEARED_MARKER,
        )
        return result.rowcount or 0


# Singleton
thread_service = ThreadService()
