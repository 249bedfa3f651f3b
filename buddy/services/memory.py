"""Memory service — long-term profile facts and deduplicated memory events."""

from __future__ import annotations

import hashlib
import re
import unicodedata
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from buddy.database import upsert_insert, utcnow
from buddy.models.memory import MemoryEvent, MemoryProfile

PROFILE_KEY_MAX = 120
PROFILE_VALUE_MAX = 800
PROFILE_DEFAULT_CONFIDENCE = 0.7

EVENT_TITLE_MAX = 80
EVENT_SUMMARY_MAX = 800
EVENT_FINGERPRINT_PREFIX = 220
EVENT_SUMMARY_FULL = 780  # stored summaries this long stop growing
EVENT_TTL_DAYS = 180
SUMMARY_SEPARATOR = "；"

_WS_RE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    return _WS_RE.sub(" ", unicodedata.normalize("NFKC", text)).strip().casefold()


def event_fingerprint(title: str | None, summary: str) -> str:
    """Stable dedup key for a narrative event.

    Titled events are keyed on the title alone, so the same event keeps its
    key while its summary grows across extractions. Untitled events fall
    back to a prefix of the summary.

    Unrelated events that share a generic title ("聊天") collide and are
    merged into one row. The extraction prompt asks for one-line specific
    titles, and reusing a title for the same event is what keeps repeated
    extraction idempotent.
    """
    norm_title = normalize_text(title or "")
    if norm_title:
        basis = f"t|{norm_title}"
    else:
        basis = f"s|{normalize_text(summary)[:EVENT_FINGERPRINT_PREFIX]}"
    return hashlib.sha256(f"event|{basis}".encode("utf-8")).hexdigest()


def merge_summary(stored: str, incoming: str) -> str:
    """Append new detail once; never rewrite or shrink what is stored."""
    if len(stored) >= EVENT_SUMMARY_FULL or incoming in stored:
        return stored
    return f"{stored}{SUMMARY_SEPARATOR}{incoming}"


class MemoryService:
    # ── Profile facts ────────────────────────────────────────────

    async def upsert_profile_fact(
        self,
        db: AsyncSession,
        user_id: UUID,
        *,
        key: str,
        value: str,
        importance: int,
    ) -> None:
        """Insert or overwrite the fact for (user, key). Last write wins."""
        now = utcnow()
        key = key[:PROFILE_KEY_MAX]
        value = value[:PROFILE_VALUE_MAX]
        stmt = upsert_insert(db, MemoryProfile).values(
            user_id=user_id,
            key=key,
            value=value,
            confidence=PROFILE_DEFAULT_CONFIDENCE,
            importance=importance,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "key"],
            set_={
                "value": stmt.excluded.value,
                "importance": stmt.excluded.importance,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await db.execute(stmt)

    async def list_profile(self, db: AsyncSession, user_id: UUID, limit: int = 200) -> list[MemoryProfile]:
        result = await db.execute(
            select(MemoryProfile)
            .where(MemoryProfile.user_id == user_id)
            .order_by(MemoryProfile.updated_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def delete_profile_fact(self, db: AsyncSession, user_id: UUID, key: str) -> bool:
        result = await db.execute(
            delete(MemoryProfile)
            .where(MemoryProfile.user_id == user_id)
            .where(MemoryProfile.key == key)
        )
        return result.rowcount == 1

    # ── Events ───────────────────────────────────────────────────

    async def upsert_event(
        self,
        db: AsyncSession,
        user_id: UUID,
        *,
        title: str | None,
        summary: str,
        importance: int,
    ) -> MemoryEvent:
        """Insert a new event or merge into the one with the same fingerprint.

        On merge the title is replaced only by a non-null title, the summary
        is extended by ``merge_summary`` and importance keeps the maximum.
        """
        title = title[:EVENT_TITLE_MAX] if title else None
        summary = summary[:EVENT_SUMMARY_MAX]
        fingerprint = event_fingerprint(title, summary)
        now = utcnow()

        inserted = await db.execute(
            upsert_insert(db, MemoryEvent)
            .values(
                user_id=user_id,
                fingerprint=fingerprint,
                title=title,
                summary=summary,
                importance=importance,
                happened_at=now,
                ttl_days=EVENT_TTL_DAYS,
                created_at=now,
            )
            .on_conflict_do_nothing(index_elements=["user_id", "fingerprint"])
            .returning(MemoryEvent)
        )
        event = inserted.scalar_one_or_none()
        if event is not None:
            return event

        result = await db.execute(
            select(MemoryEvent)
            .where(MemoryEvent.user_id == user_id)
            .where(MemoryEvent.fingerprint == fingerprint)
            .with_for_update()
        )
        event = result.scalar_one()
        if title is not None:
            event.title = title
        event.summary = merge_summary(event.summary, summary)
        event.importance = max(event.importance, importance)
        await db.flush()
        return event

    async def list_events(self, db: AsyncSession, user_id: UUID, limit: int = 100) -> list[MemoryEvent]:
        result = await db.execute(
            select(MemoryEvent)
            .where(MemoryEvent.user_id == user_id)
            .order_by(MemoryEvent.happened_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def delete_event(self, db: AsyncSession, user_id: UUID, event_id: UUID) -> bool:
        result = await db.execute(
            delete(MemoryEvent)
            .where(MemoryEvent.user_id == user_id)
            .where(MemoryEvent.id == event_id)
        )
        return result.rowcount == 1


# Singleton
memory_service = MemoryService()
