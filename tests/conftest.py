"""Shared fixtures: a throwaway SQLite database per test, a programmable
upstream provider behind httpx.MockTransport, and an ASGI test client."""

import json
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("LLM_API_KEY", "test-key")
os.environ.setdefault("MASTER_INVITE_CODE", "master-invite")
os.environ.setdefault("PASSWORD_HASH_ITERATIONS", "50000")

import httpx
import pytest
from openai import AsyncOpenAI
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import buddy.models  # noqa: F401
from buddy.database import Base, get_db, get_session_maker
from buddy.main import create_app
from buddy.services.llm import CompletionClient, get_completion_client

UPSTREAM_URL = "http://upstream.test"
MASTER_INVITE = "master-invite"


def sse_chunk(text: str) -> bytes:
    """One OpenAI-style streaming frame carrying ``text``."""
    envelope = {"choices": [{"index": 0, "delta": {"content": text}}]}
    return f"data: {json.dumps(envelope, ensure_ascii=False)}\n\n".encode("utf-8")


class ChunkStream(httpx.AsyncByteStream):
    def __init__(self, chunks: list[bytes], error: Exception | None = None) -> None:
        self._chunks = chunks
        self._error = error

    async def __aiter__(self):
        for chunk in self._chunks:
            yield chunk
        if self._error is not None:
            raise self._error


class UpstreamStub:
    """OpenAI-compatible provider. Tests set the attributes, then drive the app."""

    def __init__(self) -> None:
        self.stream_chunks: list[bytes] = [sse_chunk("嗯。"), b"data: [DONE]\n\n"]
        self.stream_error: Exception | None = None
        self.stream_status = 200
        self.completion_text = "{}"
        self.completion_status = 200
        self.requests: list[dict] = []

        transport = httpx.MockTransport(self._handle)
        self.client = CompletionClient(
            api_key="test-key",
            base_url=UPSTREAM_URL,
            model="test-model",
            http_client=httpx.AsyncClient(transport=transport),
            openai_client=AsyncOpenAI(
                api_key="test-key",
                base_url=f"{UPSTREAM_URL}/v1",
                http_client=httpx.AsyncClient(transport=transport),
                max_retries=0,
            ),
        )

    @property
    def stream_requests(self) -> list[dict]:
        return [r for r in self.requests if r.get("stream")]

    @property
    def completion_requests(self) -> list[dict]:
        return [r for r in self.requests if not r.get("stream")]

    def _handle(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append(body)

        if body.get("stream"):
            if self.stream_status != 200:
                return httpx.Response(self.stream_status, text="upstream exploded")
            return httpx.Response(
                200,
                headers={"content-type": "text/event-stream"},
                stream=ChunkStream(list(self.stream_chunks), self.stream_error),
            )

        if self.completion_status != 200:
            return httpx.Response(self.completion_status, json={"error": {"message": "provider down"}})
        return httpx.Response(
            200,
            json={
                "id": "cmpl-test",
                "object": "chat.completion",
                "created": 0,
                "model": "test-model",
                "choices": [
                    {
                        "index": 0,
                        "message": {"role": "assistant", "content": self.completion_text},
                        "finish_reason": "stop",
                    }
                ],
            },
        )


# ─── Database ────────────────────────────────────────────────────────


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'buddy.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


# ─── Upstream + app ──────────────────────────────────────────────────


@pytest.fixture
async def upstream():
    stub = UpstreamStub()
    yield stub
    await stub.client.aclose()


@pytest.fixture
def app(session_maker, upstream):
    app = create_app()

    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_maker] = lambda: session_maker
    app.dependency_overrides[get_completion_client] = lambda: upstream.client
    return app


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def register(client):
    """Register through the API and return ``(body, auth headers)``."""

    async def _register(username: str = "alice", password: str = "secret1", invite_code: str = MASTER_INVITE):
        response = await client.post(
            "/api/auth/register",
            json={"username": username, "password": password, "invite_code": invite_code},
        )
        assert response.status_code == 200, response.text
        body = response.json()
        return body, {"Authorization": f"Bearer {body['token']}"}

    return _register
