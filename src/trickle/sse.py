"""Server-Sent Events framing helpers."""

from __future__ import annotations

import codecs
import json
from collections.abc import AsyncIterable, AsyncIterator


def encode_event(payload: dict | str) -> bytes:
    """Frame a payload as one ``data:`` event."""
    data = payload if isinstance(payload, str) else json.dumps(payload, ensure_ascii=False)
    return f"data: {data}\n\n".encode()


def error_frame(message: str, status: int | None = None) -> bytes:
    """The synthetic frame the relay writes in place of upstream data."""
    return encode_event({"error": message, "status": status})


def heartbeat_payload(text: str, model: str = "") -> dict:
    """A chunk shaped like a genuine completion delta.

    The placeholder text travels in the reasoning channel so it never
    ends up in the final answer.
    """
    return {
        "id": "heartbeat",
        "object": "chat.completion.chunk",
        "model": model,
        "choices": [
            {
                "index": 0,
                "delta": {"role": "assistant", "reasoning_content": text},
                "finish_reason": None,
            }
        ],
    }


def gemini_heartbeat_payload(text: str) -> dict:
    """The ``candidates`` counterpart of :func:`heartbeat_payload`.

    The placeholder goes in a ``thought`` part for the same reason.
    """
    return {
        "candidates": [
            {
                "content": {"role": "model", "parts": [{"text": text, "thought": True}]},
                "index": 0,
            }
        ],
    }


async def iter_lines(chunks: AsyncIterable[bytes]) -> AsyncIterator[str]:
    """Split a byte stream into text lines across chunk boundaries.

    Multi-byte characters split between chunks are reassembled before
    decoding.
    """
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buffer = ""
    async for chunk in chunks:
        buffer += decoder.decode(chunk)
        *lines, buffer = buffer.split("\n")
        for line in lines:
            yield line.rstrip("\r")
    buffer += decoder.decode(b"", final=True)
    if buffer:
        yield buffer.rstrip("\r")
