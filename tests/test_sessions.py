"""Tests for bearer session issuance, resolution and revocation."""

from datetime import timedelta

import pytest
from sqlalchemy import select

from buddy.core.errors import Forbidden, Unauthenticated
from buddy.core.security import hash_token
from buddy.database import utcnow
from buddy.models.session import UserSession
from buddy.models.user import User, UserStatus
from buddy.services.session import SessionManager


@pytest.fixture
async def user(db):
    user = User(username="alice", password_hash="x")
    db.add(user)
    await db.commit()
    return user


@pytest.fixture
def manager():
    return SessionManager(ttl=timedelta(days=30))


class TestSessionManager:
    async def test_create_stores_only_digest(self, db, user, manager):
        issued = await manager.create(db, user.id)
        await db.commit()

        row = (await db.execute(select(UserSession))).scalar_one()
        assert row.token_hash == hash_token(issued.token)
        assert row.token_hash != issued.token
        assert row.revoked_at is None
        assert timedelta(days=29) < issued.expires_at - utcnow() <= timedelta(days=30)

    async def test_resolve_valid(self, db, user, manager):
        issued = await manager.create(db, user.id)
        await db.commit()

        resolved = await manager.resolve(db, issued.token)
        assert resolved.user_id == user.id
        assert resolved.username == "alice"
        assert resolved.role == "user"
        assert resolved.token_hash == hash_token(issued.token)

    async def test_unknown_token(self, db, user, manager):
        with pytest.raises(Unauthenticated):
            await manager.resolve(db, "not-a-token")

    async def test_expired_token(self, db, user):
        manager = SessionManager(ttl=timedelta(seconds=-1))
        issued = await manager.create(db, user.id)
        await db.commit()

        with pytest.raises(Unauthenticated) as exc:
            await manager.resolve(db, issued.token)
        assert exc.value.detail == "session expired"

    async def test_revoke_is_final(self, db, user, manager):
        issued = await manager.create(db, user.id)
        await db.commit()
        token_hash = hash_token(issued.token)

        assert await manager.revoke(db, token_hash) is True
        await db.commit()
        first = (await db.execute(select(UserSession.revoked_at))).scalar_one()

        # Second revocation keeps the first timestamp
        assert await manager.revoke(db, token_hash) is False
        await db.commit()
        assert (await db.execute(select(UserSession.revoked_at))).scalar_one() == first

        with pytest.raises(Unauthenticated) as exc:
            await manager.resolve(db, issued.token)
        assert exc.value.detail == "session revoked"

    async def test_disabled_owner_forbidden(self, db, user, manager):
        issued = await manager.create(db, user.id)
        user.status = UserStatus.DISABLED.value
        await db.commit()

        with pytest.raises(Forbidden):
            await manager.resolve(db, issued.token)

    async def test_touch_updates_last_seen(self, db, session_maker, user, manager):
        issued = await manager.create(db, user.id)
        await db.commit()
        before = (await db.execute(select(UserSession.last_seen_at))).scalar_one()

        await manager.touch(session_maker, hash_token(issued.token))

        async with session_maker() as fresh:
            after = (await fresh.execute(select(UserSession.last_seen_at))).scalar_one()
        assert after >= before

    async def test_touch_swallows_failures(self, manager):
        def broken_maker():
            raise RuntimeError("db down")

        # Best-effort: must not raise
        await manager.touch(broken_maker, "deadbeef")

    async def test_several_sessions_per_user(self, db, user, manager):
        a = await manager.create(db, user.id)
        b = await manager.create(db, user.id)
        await db.commit()
        await manager.revoke(db, hash_token(a.token))
        await db.commit()

        resolved = await manager.resolve(db, b.token)
        assert resolved.user_id == user.id
