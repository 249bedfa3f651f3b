"""Tests for the finalize engine: extraction parsing, memory writes and relationship deltas."""

import json
from uuid import UUID

import pytest
from sqlalchemy import func, select, update

from buddy.core.errors import ExtractionFailed
from buddy.models.memory import MemoryEvent, MemoryProfile
from buddy.models.relationship import RelationshipState
from buddy.services.finalize import parse_extraction
from conftest import sse_chunk


def _extraction(profile=None, events=None, delta=None) -> str:
    return json.dumps(
        {
            "profile_updates": profile or [],
            "events": events or [],
            "relationship_delta": delta or {"bond": 0, "trust": 0, "warmth": 0, "repair": 0},
        },
        ensure_ascii=False,
    )


async def _relationship(session_maker, user_id: UUID) -> RelationshipState:
    async with session_maker() as db:
        return await db.get(RelationshipState, user_id)


async def _count(session_maker, model) -> int:
    async with session_maker() as db:
        return await db.scalar(select(func.count()).select_from(model))


# ─── Parsing ─────────────────────────────────────────────────────────


class TestParseExtraction:
    def test_plain_json(self):
        result = parse_extraction(_extraction(profile=[{"key": "user.likes", "value": "猫", "importance": 4}]))
        assert result.profile_updates[0].key == "user.likes"
        assert result.relationship_delta.bond == 0

    def test_code_fence_stripped(self):
        text = "```json\n" + _extraction(events=[{"title": "T", "summary": "A"}]) + "\n```"
        assert parse_extraction(text).events[0].summary == "A"

    def test_missing_sections_allowed(self):
        result = parse_extraction("{}")
        assert result.profile_updates is None
        assert result.events is None
        assert result.relationship_delta is None

    def test_numbers_coerced_to_text(self):
        result = parse_extraction('{"profile_updates":[{"key":"user.age","value":18}]}')
        assert result.profile_updates[0].value == "18"

    @pytest.mark.parametrize(
        "text",
        [
            "我觉得这段对话很温馨",
            "[1, 2, 3]",
            '{"profile_updates": "nope"}',
            '{"events": [{"summary": {"nested": true}}]}',
            '{"relationship_delta": [1, 2]}',
        ],
    )
    def test_rejected(self, text):
        with pytest.raises(ExtractionFailed):
            parse_extraction(text)


# ─── Finalize over HTTP ──────────────────────────────────────────────


class TestFinalize:
    @pytest.fixture
    async def account(self, client, register, upstream):
        body, headers = await register()
        upstream.stream_chunks = [sse_chunk("好呀，周末一起去看猫咖吧！"), b"data: [DONE]\n\n"]
        await client.post("/api/chat", json={"message": "我最喜欢猫了"}, headers=headers)
        return UUID(body["user"]["id"]), headers

    async def test_writes_memory_and_relationship(self, client, account, upstream, session_maker):
        user_id, headers = account
        upstream.completion_text = _extraction(
            profile=[{"key": "user.likes", "value": "猫", "importance": 4}],
            events=[{"title": "聊到猫", "summary": "用户说最喜欢猫", "importance": 3}],
            delta={"bond": 2, "trust": 1, "warmth": 1, "repair": 0},
        )

        response = await client.post("/api/finalize", headers=headers)

        assert response.status_code == 200
        assert response.json() == {
            "ok": True,
            "profile_updates": 1,
            "events_upserted": 1,
            "relationship": {
                "bond": 2.0,
                "trust": 1.0,
                "warmth": 1.0,
                "repair": 0.0,
                "stage": 0,
                "delta": {"bond": 2, "trust": 1, "warmth": 1, "repair": 0},
            },
        }
        async with session_maker() as db:
            fact = (await db.execute(select(MemoryProfile))).scalar_one()
        assert (fact.key, fact.value, fact.importance) == ("user.likes", "猫", 4)

    async def test_extraction_request(self, client, account, upstream):
        _, headers = account
        upstream.completion_text = _extraction()

        await client.post("/api/finalize", headers=headers)

        request = upstream.completion_requests[-1]
        assert request["temperature"] == 0.2
        assert request["response_format"] == {"type": "json_object"}
        assert request["messages"][0]["role"] == "system"
        assert "严格 JSON" in request["messages"][0]["content"]
        transcript = request["messages"][1]["content"]
        assert "user: 我最喜欢猫了" in transcript
        assert "assistant: 好呀，周末一起去看猫咖吧！" in transcript
        assert transcript.index("user: 我最喜欢猫了") < transcript.index("assistant: 好呀")

    async def test_bond_caps_at_100(self, client, account, upstream, db, session_maker):
        user_id, headers = account
        await db.execute(update(RelationshipState).where(RelationshipState.user_id == user_id).values(bond=97, stage=4))
        await db.commit()
        upstream.completion_text = _extraction(delta={"bond": 3})

        response = await client.post("/api/finalize", headers=headers)

        assert response.json()["relationship"]["bond"] == 100
        assert response.json()["relationship"]["stage"] == 4
        assert (await _relationship(session_maker, user_id)).bond == 100

    async def test_out_of_range_delta_clamped(self, client, account, upstream, session_maker):
        user_id, headers = account
        upstream.completion_text = _extraction(delta={"bond": 50, "trust": -9, "warmth": "lots", "repair": 2.7})

        response = await client.post("/api/finalize", headers=headers)

        relationship = response.json()["relationship"]
        assert relationship["delta"] == {"bond": 4, "trust": -2, "warmth": 0, "repair": 2}
        assert relationship["bond"] == 4
        assert relationship["trust"] == 0
        stored = await _relationship(session_maker, user_id)
        assert (stored.bond, stored.trust, stored.warmth, stored.repair, stored.stage) == (4, 0, 0, 2, 0)

    async def test_stage_advances_with_bond(self, client, account, upstream, db):
        user_id, headers = account
        await db.execute(update(RelationshipState).where(RelationshipState.user_id == user_id).values(bond=13))
        await db.commit()
        upstream.completion_text = _extraction(delta={"bond": 2})

        response = await client.post("/api/finalize", headers=headers)
        assert response.json()["relationship"]["stage"] == 1

    async def test_event_merge_is_idempotent(self, client, account, upstream, session_maker):
        _, headers = account
        for summary in ("A", "A, and also B", "A, and also B"):
            upstream.completion_text = _extraction(events=[{"title": "T", "summary": summary, "importance": 3}])
            response = await client.post("/api/finalize", headers=headers)
            assert response.status_code == 200

        async with session_maker() as db:
            events = (await db.execute(select(MemoryEvent))).scalars().all()
        assert len(events) == 1
        assert events[0].summary == "A；A, and also B"

    async def test_incomplete_items_skipped(self, client, account, upstream, session_maker):
        _, headers = account
        upstream.completion_text = _extraction(
            profile=[
                {"key": "user.likes", "value": ""},
                {"value": "无主的值"},
                {"key": "user.goal", "value": "早睡", "importance": 99},
                {"key": "user.city", "value": "杭州"},
            ],
            events=[{"title": "空的"}, {"summary": "没有标题的事", "importance": -3}],
        )

        response = await client.post("/api/finalize", headers=headers)

        assert response.json()["profile_updates"] == 2
        assert response.json()["events_upserted"] == 1
        async with session_maker() as db:
            facts = {f.key: f.importance for f in (await db.execute(select(MemoryProfile))).scalars()}
            event = (await db.execute(select(MemoryEvent))).scalar_one()
        assert facts == {"user.goal": 5, "user.city": 3}
        assert event.title is None
        assert event.importance == 1

    async def test_bad_json_writes_nothing(self, client, account, upstream, session_maker):
        user_id, headers = account
        upstream.completion_text = "好的，我来总结一下：用户喜欢猫。"

        response = await client.post("/api/finalize", headers=headers)

        assert response.status_code == 500
        assert response.json()["error"] == "extraction_failed"
        assert await _count(session_maker, MemoryProfile) == 0
        assert await _count(session_maker, MemoryEvent) == 0
        assert (await _relationship(session_maker, user_id)).bond == 0

    async def test_provider_error(self, client, account, upstream, session_maker):
        _, headers = account
        upstream.completion_status = 500

        response = await client.post("/api/finalize", headers=headers)

        assert response.status_code == 500
        assert response.json()["ok"] is False
        assert response.json()["error"] == "upstream_failure"
        assert await _count(session_maker, MemoryProfile) == 0

    async def test_requires_auth(self, client, upstream):
        response = await client.post("/api/finalize")
        assert response.status_code == 401
        assert upstream.completion_requests == []
