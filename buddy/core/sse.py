"""Server-Sent-Events helpers for the chat relay.

Upstream side, a pipeline of small transformations::

    bytes ─► decode_utf8 ─► iter_sse_data ─► extract_delta ─► text fragments

Client side, ``format_sse`` frames each fragment and ``DONE_FRAME``
terminates the stream.
"""

from __future__ import annotations

import codecs
import json
import re
from collections.abc import AsyncIterable, AsyncIterator

DONE_SENTINEL = "[DONE]"
DONE_FRAME = f"data: {DONE_SENTINEL}\n\n"

_LINE_BREAK_RE = re.compile(r"\r\n|\r|\n")


# ── Upstream decoding ───────────────────────────────────────────────


async def decode_utf8(chunks: AsyncIterable[bytes]) -> AsyncIterator[str]:
    """Decode a byte stream whose chunk boundaries may split code points."""
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    async for chunk in chunks:
        text = decoder.decode(chunk)
        if text:
            yield text
    tail = decoder.decode(b"", final=True)
    if tail:
        yield tail


def _data_payload(line: str) -> str | None:
    line = line.strip()
    if not line.startswith("data:"):
        return None
    return line[5:].strip() or None


async def iter_sse_data(texts: AsyncIterable[str]) -> AsyncIterator[str]:
    """Yield the payload of each ``data:`` line until the ``[DONE]`` frame.

    Comment lines, ``event:``/``id:`` fields and blank keep-alives are
    skipped. Only a partial trailing line is ever buffered.
    """
    buffer = ""
    async for text in texts:
        buffer += text
        while (idx := buffer.find("\n")) != -1:
            line, buffer = buffer[:idx], buffer[idx + 1:]
            payload = _data_payload(line)
            if payload is None:
                continue
            if payload == DONE_SENTINEL:
                return
            yield payload

    payload = _data_payload(buffer)
    if payload is not None and payload != DONE_SENTINEL:
        yield payload


def extract_delta(payload: str) -> str:
    """Pull the incremental text out of an OpenAI-style chunk envelope.

    Returns "" for frames that carry no text (role headers, usage frames)
    and for payloads that are not JSON at all.
    """
    try:
        envelope = json.loads(payload)
    except (json.JSONDecodeError, TypeError):
        return ""
    if not isinstance(envelope, dict):
        return ""
    choices = envelope.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return ""
    delta = choices[0].get("delta") or {}
    content = delta.get("content") if isinstance(delta, dict) else None
    return content if isinstance(content, str) else ""


async def iter_text_deltas(chunks: AsyncIterable[bytes]) -> AsyncIterator[str]:
    """Full upstream pipeline: raw bytes in, non-empty text fragments out."""
    async for payload in iter_sse_data(decode_utf8(chunks)):
        delta = extract_delta(payload)
        if delta:
            yield delta


# ── Client framing ──────────────────────────────────────────────────


def format_sse(data: str) -> str:
    """Frame one fragment as a ``data:`` event, splitting on any SSE line break."""
    lines = _LINE_BREAK_RE.split(data)
    data_lines = "\n".join(f"data: {line}" for line in lines)
    return f"{data_lines}\n\n"
