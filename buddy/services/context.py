"""Context assembly — persona, relationship, memory and history for a chat turn.

Everything here is read-only: the gibberish filter decides what re-enters a
prompt, it never edits or deletes stored messages.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from buddy.config import get_settings
from buddy.core.relationship import stage_from_bond, stage_name
from buddy.models.companion import DEFAULT_COMPANION_NAME, DEFAULT_TONE_STYLE, CompanionProfile
from buddy.models.memory import MemoryProfile
from buddy.models.message import Message, MessageRole
from buddy.models.relationship import RelationshipState
from buddy.services.thread import thread_service

EMPTY_MEMORY_LINE = "- （暂无）"


# ── Gibberish filter ────────────────────────────────────────────────


@dataclass(frozen=True)
class GibberishPolicy:
    """Heuristic for malformed assistant replies.

    A reply is dropped from context when it is shorter than ``min_length``,
    when it is shorter than ``short_length`` and has no sentence
    punctuation, or when it contains ``max_ellipsis_runs`` or more runs of
    dots/ellipses.
    """

    min_length: int = 2
    short_length: int = 12
    max_ellipsis_runs: int = 2
    punctuation: str = "，。？！、"
    ellipsis_pattern: re.Pattern = field(default=re.compile(r"\.{3,}|。{2,}|…{2,}"))

    @classmethod
    def from_settings(cls) -> GibberishPolicy:
        settings = get_settings()
        return cls(
            min_length=settings.gibberish_min_length,
            short_length=settings.gibberish_short_length,
            max_ellipsis_runs=settings.gibberish_max_ellipsis_runs,
        )

    def is_gibberish(self, text: str) -> bool:
        t = text.strip()
        if len(t) < self.min_length:
            return True
        has_punctuation = any(ch in self.punctuation for ch in t)
        if not has_punctuation and len(t) < self.short_length:
            return True
        if len(self.ellipsis_pattern.findall(t)) >= self.max_ellipsis_runs:
            return True
        return False


def filter_history(messages: list[Message], policy: GibberishPolicy) -> list[Message]:
    """Drop malformed assistant replies; user and system messages always pass."""
    return [
        m for m in messages
        if not (m.role == MessageRole.ASSISTANT.value and policy.is_gibberish(m.content))
    ]


# ── System prompt ───────────────────────────────────────────────────

TONE_PRESETS: dict[str, str] = {
    "warm": "像真实朋友一样自然温柔，回复简洁、有情绪、有分寸。",
    "playful": "像真实朋友一样俏皮自然，能接梗，但不油腻。",
    "quiet": "像真实朋友一样安静陪伴，少问问题，多接住情绪。",
    "pragmatic": "像真实朋友一样务实，先共情再给可执行建议。",
}

CHAT_RULES = (
    "用自然中文口语聊天，句子要完整，必须有正常标点（，。？！）。",
    "禁止碎片拼接、乱码、无标点短句连在一起。",
    "每次回复 1-3 句，像微信聊天；最多只问 1 个问题。",
    "不要模式化套话，不要每次都“我理解你…”。可以更像真人：停顿、短句、轻微情绪词都可以。",
    "如果发现输出不通顺，请在输出前自行重写，直到自然通顺为止。",
)


def tone_directive(tone_style: str | None) -> str:
    return TONE_PRESETS.get(tone_style or DEFAULT_TONE_STYLE, TONE_PRESETS[DEFAULT_TONE_STYLE])


def render_memory(facts: list[MemoryProfile]) -> str:
    if not facts:
        return EMPTY_MEMORY_LINE
    return "\n".join(f"- {f.key}: {f.value}" for f in facts)


def build_system_prompt(
    companion: CompanionProfile | None,
    relationship: RelationshipState | None,
    memory_text: str,
) -> str:
    """Render the instruction block. Same inputs always give the same text."""
    name = (companion.companion_name if companion else None) or DEFAULT_COMPANION_NAME
    persona = tone_directive(companion.tone_style if companion else None)

    bond = float(relationship.bond) if relationship else 0.0
    stage_text = stage_name(stage_from_bond(bond))

    rules = "\n".join(f"{i}) {rule}" for i, rule in enumerate(CHAT_RULES, start=1))

    return (
        f"你是我的AI陪伴伙伴，名字叫「{name}」。你必须始终自称为「{name}」。\n"
        f"人设：{persona}\n"
        "\n"
        "聊天规则（必须遵守）：\n"
        f"{rules}\n"
        "\n"
        "长期记忆（仅在自然相关时提及，像“突然想起”）：\n"
        f"{memory_text}\n"
        "\n"
        "关系状态：\n"
        f"- 亲密度：{bond:.1f}/100\n"
        f"- 阶段：{stage_text}"
    )


# ── Assembler ───────────────────────────────────────────────────────


@dataclass
class AssembledContext:
    companion: CompanionProfile | None
    relationship: RelationshipState | None
    memory_text: str
    recent_messages: list[Message]

    @property
    def system_prompt(self) -> str:
        return build_system_prompt(self.companion, self.relationship, self.memory_text)

    def history(self, *, exclude_id: int | None = None) -> list[dict[str, str]]:
        return [
            {"role": m.role, "content": m.content}
            for m in self.recent_messages
            if m.id != exclude_id
        ]


class ContextAssembler:
    def __init__(
        self,
        *,
        memory_limit: int | None = None,
        history_limit: int | None = None,
        policy: GibberishPolicy | None = None,
    ) -> None:
        settings = get_settings()
        self.memory_limit = memory_limit or settings.context_memory_limit
        self.history_limit = history_limit or settings.context_history_limit
        self.policy = policy or GibberishPolicy.from_settings()

    async def assemble(self, db: AsyncSession, user_id: UUID, thread_id: UUID) -> AssembledContext:
        companion = await db.get(CompanionProfile, user_id)
        relationship = await db.get(RelationshipState, user_id)

        facts_result = await db.execute(
            select(MemoryProfile)
            .where(MemoryProfile.user_id == user_id)
            .order_by(MemoryProfile.updated_at.desc())
            .limit(self.memory_limit)
        )
        memory_text = render_memory(list(facts_result.scalars().all()))

        recent = await thread_service.recent_messages(db, user_id, thread_id, self.history_limit)

        return AssembledContext(
            companion=companion,
            relationship=relationship,
            memory_text=memory_text,
            recent_messages=filter_history(recent, self.policy),
        )
