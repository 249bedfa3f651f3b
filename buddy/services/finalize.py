"""Finalize engine — consolidates a transcript window into long-term state.

One pass:
1. Render the last ~40 messages as a flat transcript.
2. Ask the completion service for strict JSON (profile updates, events,
   relationship delta) and validate it against ``ExtractionResult``.
3. Upsert profile facts, merge events, then apply the clamped
   relationship delta as the final write.

Nothing is written unless step 2 succeeds.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from buddy.config import get_settings
from buddy.core.errors import ExtractionFailed
from buddy.core.logging import get_logger
from buddy.core.relationship import AXES, RelationshipScores, apply_delta, clamp_delta, clamp_int
from buddy.database import upsert_insert, utcnow
from buddy.models.message import Message
from buddy.models.relationship import RelationshipState
from buddy.schemas.finalize import ExtractionResult
from buddy.services.llm import CompletionClient
from buddy.services.memory import memory_service
from buddy.services.thread import thread_service

logger = get_logger(__name__)

EXTRACTION_SYSTEM_PROMPT = "你是对话记忆整理器与关系评估器。只输出严格 JSON，不能输出任何多余文字。"

EXTRACTION_USER_TEMPLATE = """请基于对话抽取长期记忆，并评估本轮互动质量，输出 JSON：
{{
  "profile_updates":[{{"key":"user.xxx","value":"...","importance":1-5}}],
  "events":[{{"title":"一句话标题","summary":"发生了什么（短）","importance":1-5}}],
  "relationship_delta": {{"bond": -2..+4, "trust": -2..+3, "warmth": -2..+3, "repair": -2..+3}}
}}
规则：
- bond：亲密度变化（默认 0~+2；明显深入/互相理解可到 +3/+4；冲突/冒犯可为负）
- trust/warmth/repair 同理，范围小一点。
- 不要记录敏感隐私（账号、密码、精确地址、身份证号等）。
- key 用简短路径，如 user.likes / user.schedule / user.goal / user.boundary。
- 同一件事请沿用相同的 title。
对话：
{transcript}"""

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)

DEFAULT_IMPORTANCE = 3
RAW_SNIPPET_CHARS = 300


@dataclass
class FinalizeResult:
    profile_updates: int
    events_upserted: int
    relationship: RelationshipScores
    delta: dict[str, int]

    def to_dict(self) -> dict:
        return {
            "profile_updates": self.profile_updates,
            "events_upserted": self.events_upserted,
            "relationship": {
                **{axis: getattr(self.relationship, axis) for axis in AXES},
                "stage": self.relationship.stage,
                "delta": self.delta,
            },
        }


def render_transcript(messages: list[Message]) -> str:
    return "\n".join(f"{m.role}: {m.content}" for m in messages)


def parse_extraction(text: str) -> ExtractionResult:
    """Validate model output. Any deviation is an ExtractionFailed, never a guess."""
    raw = text.strip()
    fenced = _FENCE_RE.match(raw)
    if fenced:
        raw = fenced.group(1)
    snippet = raw[:RAW_SNIPPET_CHARS]
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ExtractionFailed(f"not JSON: {e.msg}; raw: {snippet}") from e
    if not isinstance(data, dict):
        raise ExtractionFailed(f"expected a JSON object; raw: {snippet}")
    try:
        return ExtractionResult.model_validate(data)
    except ValidationError as e:
        raise ExtractionFailed(f"schema mismatch: {e.error_count()} error(s); raw: {snippet}") from e


def _importance(value: float | None) -> int:
    return clamp_int(DEFAULT_IMPORTANCE if value is None else value, 1, 5)


class FinalizeEngine:
    def __init__(self, client: CompletionClient, *, history_limit: int | None = None) -> None:
        self._client = client
        self.history_limit = history_limit or get_settings().finalize_history_limit

    async def extract(self, db: AsyncSession, user_id: UUID, thread_id: UUID) -> ExtractionResult:
        recent = await thread_service.recent_messages(db, user_id, thread_id, self.history_limit)
        prompt = [
            {"role": "system", "content": EXTRACTION_SYSTEM_PROMPT},
            {"role": "user", "content": EXTRACTION_USER_TEMPLATE.format(transcript=render_transcript(recent))},
        ]
        text = await self._client.complete(
            prompt,
            temperature=get_settings().llm_finalize_temperature,
            json_mode=True,
        )
        return parse_extraction(text)

    async def finalize(self, db: AsyncSession, user_id: UUID, thread_id: UUID) -> FinalizeResult:
        """Run one consolidation pass and commit it.

        Raises UpstreamFailure or ExtractionFailed before any write happens.
        Profile and event writes are committed before the relationship
        update; a failure in that last step propagates to the caller.
        """
        extraction = await self.extract(db, user_id, thread_id)

        profile_count = 0
        for update in extraction.profile_updates or []:
            key = (update.key or "").strip()
            value = (update.value or "").strip()
            if not key or not value:
                continue
            await memory_service.upsert_profile_fact(
                db,
                user_id,
                key=key,
                value=value,
                importance=_importance(update.importance),
            )
            profile_count += 1

        event_count = 0
        for event in extraction.events or []:
            summary = (event.summary or "").strip()
            if not summary:
                continue
            await memory_service.upsert_event(
                db,
                user_id,
                title=(event.title or "").strip() or None,
                summary=summary,
                importance=_importance(event.importance),
            )
            event_count += 1

        await db.commit()

        delta = clamp_delta(
            extraction.relationship_delta.model_dump() if extraction.relationship_delta else None
        )
        scores = await self.apply_relationship_delta(db, user_id, delta)
        await db.commit()

        logger.info(
            "finalize_completed",
            profile_updates=profile_count,
            events_upserted=event_count,
            bond=scores.bond,
            stage=scores.stage,
            delta=delta,
        )
        return FinalizeResult(
            profile_updates=profile_count,
            events_upserted=event_count,
            relationship=scores,
            delta=delta,
        )

    async def apply_relationship_delta(
        self,
        db: AsyncSession,
        user_id: UUID,
        delta: dict[str, int],
    ) -> RelationshipScores:
        """Add a clamped delta to the stored axes in one statement."""
        state = await db.get(RelationshipState, user_id, with_for_update=True)
        current = RelationshipScores(
            **{axis: float(getattr(state, axis) or 0) for axis in AXES}
        ) if state else RelationshipScores()

        scores = apply_delta(current, delta)
        values = {axis: getattr(scores, axis) for axis in AXES}
        values.update(stage=scores.stage, updated_at=utcnow())

        stmt = upsert_insert(db, RelationshipState).values(user_id=user_id, **values)
        stmt = stmt.on_conflict_do_update(index_elements=["user_id"], set_=values)
        await db.execute(stmt)
        if state is not None:
            await db.refresh(state)
        return scores
