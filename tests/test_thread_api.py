"""Tests for transcript reads and thread clearing."""

from datetime import timedelta
from uuid import UUID

from buddy.api.v1.thread import clamp_limit
from buddy.database import utcnow
from buddy.models.message import Message
from buddy.services.thread import THREAD_CLEARED_MARKER, thread_service


async def _seed(db, user_id: UUID, count: int) -> UUID:
    thread = await thread_service.get_or_create_thread(db, user_id)
    base = utcnow()
    for i in range(count):
        db.add(
            Message(
                user_id=user_id,
                thread_id=thread.id,
                role="user" if i % 2 == 0 else "assistant",
                content=f"m{i}",
                created_at=base + timedelta(seconds=i),
            )
        )
    await db.commit()
    return thread.id


class TestThreadService:
    async def test_get_or_create_is_idempotent(self, db, register):
        body, _ = await register()
        user_id = UUID(body["user"]["id"])

        first = await thread_service.get_or_create_thread(db, user_id)
        second = await thread_service.get_or_create_thread(db, user_id)
        assert first.id == second.id

    def test_clamp_limit(self):
        assert clamp_limit(None) == 80
        assert clamp_limit(1) == 10
        assert clamp_limit(50) == 50
        assert clamp_limit(10_000) == 200


class TestThreadMessages:
    async def test_newest_window_oldest_first(self, client, register, db):
        body, headers = await register()
        thread_id = await _seed(db, UUID(body["user"]["id"]), 15)

        response = await client.get("/api/thread/messages", params={"limit": 10}, headers=headers)

        assert response.status_code == 200
        payload = response.json()
        assert payload["ok"] is True
        assert payload["thread_id"] == str(thread_id)
        assert [m["content"] for m in payload["messages"]] == [f"m{i}" for i in range(5, 15)]

    async def test_limit_clamped_low(self, client, register, db):
        body, headers = await register()
        await _seed(db, UUID(body["user"]["id"]), 12)

        response = await client.get("/api/thread/messages", params={"limit": 2}, headers=headers)
        assert len(response.json()["messages"]) == 10

    async def test_other_users_messages_invisible(self, client, register, db):
        alice, _ = await register("alice")
        _, bob_headers = await register("bob")
        await _seed(db, UUID(alice["user"]["id"]), 3)

        response = await client.get("/api/thread/messages", headers=bob_headers)
        assert response.json()["messages"] == []


class TestThreadClear:
    async def test_clear_leaves_marker(self, client, register, db):
        body, headers = await register()
        await _seed(db, UUID(body["user"]["id"]), 4)

        response = await client.post("/api/thread/clear", headers=headers)
        assert response.json() == {"ok": True, "deleted": 4}

        messages = (await client.get("/api/thread/messages", headers=headers)).json()["messages"]
        assert [(m["role"], m["content"]) for m in messages] == [("system", THREAD_CLEARED_MARKER)]

    async def test_clear_empty_thread(self, client, register):
        _, headers = await register()
        response = await client.post("/api/thread/clear", headers=headers)
        assert response.json() == {"ok": True, "deleted": 0}
