"""Upstream completion client (OpenAI-compatible chat completions).

Two call shapes:
- ``open_stream``: raw SSE bytes over httpx, consumed by the chat relay's
  decoding pipeline.
- ``complete``: a single non-streaming answer via the openai SDK, used for
  structured extraction.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

import httpx
from openai import APIError, AsyncOpenAI

from buddy.config import get_settings
from buddy.core.errors import UpstreamFailure
from buddy.core.logging import get_logger

logger = get_logger(__name__)

ChatMessages = list[dict[str, str]]


class UpstreamStream:
    """An open streaming response. Iterate ``chunks()``, then ``aclose()``."""

    def __init__(self, response: httpx.Response) -> None:
        self._response = response

    def chunks(self) -> AsyncIterator[bytes]:
        return self._response.aiter_bytes()

    async def aclose(self) -> None:
        await self._response.aclose()


class CompletionClient:
    def __init__(
        self,
        *,
        api_key: str,
        base_url: str,
        model: str,
        timeout: float = 120.0,
        http_client: httpx.AsyncClient | None = None,
        openai_client: AsyncOpenAI | None = None,
    ) -> None:
        self.model = model
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._openai = openai_client or AsyncOpenAI(
            api_key=api_key,
            base_url=f"{self._base_url}/v1",
            timeout=timeout,
        )

    async def open_stream(
        self,
        messages: ChatMessages,
        *,
        temperature: float,
        top_p: float,
    ) -> UpstreamStream:
        """Send a streaming completion request and return once headers arrive.

        Raises UpstreamFailure when the provider cannot be reached or answers
        with a non-success status; the response body becomes the detail.
        """
        payload = {
            "model": self.model,
            "stream": True,
            "messages": messages,
            "temperature": temperature,
            "top_p": top_p,
        }
        request = self._http.build_request(
            "POST",
            f"{self._base_url}/v1/chat/completions",
            json=payload,
            headers={"Authorization": f"Bearer {self._api_key}"},
        )
        try:
            response = await self._http.send(request, stream=True)
        except httpx.HTTPError as e:
            logger.warning("upstream_connect_failed", error=str(e))
            raise UpstreamFailure(str(e)) from e

        if response.is_error:
            body = (await response.aread()).decode("utf-8", errors="replace")
            await response.aclose()
            logger.warning("upstream_rejected", status_code=response.status_code)
            raise UpstreamFailure(body or f"upstream status {response.status_code}")

        return UpstreamStream(response)

    async def complete(
        self,
        messages: ChatMessages,
        *,
        temperature: float,
        json_mode: bool = False,
    ) -> str:
        """Non-streaming completion; returns the first choice's text.

        ``json_mode`` asks the provider for a single JSON object.
        """
        extra = {"response_format": {"type": "json_object"}} if json_mode else {}
        try:
            response = await self._openai.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=temperature,
                stream=False,
                **extra,
            )
        except APIError as e:
            logger.warning("upstream_completion_failed", error=str(e))
            raise UpstreamFailure(str(e)) from e

        if not response.choices:
            raise UpstreamFailure("empty completion")
        return response.choices[0].message.content or ""

    async def aclose(self) -> None:
        await self._http.aclose()
        await self._openai.close()


# ── Shared client (singleton) ───────────────────────────────────────

_client: CompletionClient | None = None


def get_completion_client() -> CompletionClient:
    """Get or create the shared completion client."""
    global _client
    if _client is None:
        settings = get_settings()
        _client = CompletionClient(
            api_key=settings.llm_api_key,
            base_url=settings.llm_base_url,
            model=settings.llm_model,
            timeout=settings.llm_timeout_seconds,
        )
    return _client


async def close_completion_client() -> None:
    """Close the shared client (call on shutdown)."""
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
