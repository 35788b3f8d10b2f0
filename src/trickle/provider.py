"""Client-side transport used by the session controller.

A :class:`ModelProvider` opens one exchange with an OpenAI-compatible
endpoint (usually the relay) and hands back either a line stream or a
buffered message.  Transport failures are translated into the
:mod:`trickle.errors` taxonomy here so the controller never sees SDK
exception types.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

import httpx
from openai import APIConnectionError, APIStatusError, AsyncOpenAI

from trickle.errors import UpstreamNonSuccess, UpstreamUnreachable
from trickle.message import RequestPayload
from trickle.sse import iter_lines

logger = logging.getLogger(__name__)


@dataclass
class StreamedResponse:
    """An open streamed response.

    Args:
        raw: The underlying HTTP response object.
        status_code: HTTP status of the response.
        content_type: Value of the ``Content-Type`` header.
        lines: Async iterator over the body's text lines.
        read_text: Reads the remaining body as text.
    """

    raw: Any
    status_code: int
    content_type: str
    lines: AsyncIterator[str]
    read_text: Callable[[], Awaitable[str]]


@dataclass
class CompletedResponse:
    """A buffered (non-streamed) completion."""

    raw: Any
    content: str
    tool_calls: list
    usage: Any = None


class ModelProvider:
    def stream(self, payload: RequestPayload):
        """Open a streamed exchange.  Used as ``async with``."""
        raise NotImplementedError

    async def complete(self, payload: RequestPayload) -> CompletedResponse:
        raise NotImplementedError


class OpenAICompatibleProvider(ModelProvider):
    """Talks to any endpoint that speaks the chat-completions protocol.

    Args:
        base_url: Endpoint root, e.g. the relay's route prefix.
        api_key: Sent as the bearer token.  Falls back to
            ``OPENAI_API_KEY``.
        default_headers: Extra headers for every request, e.g. a
            vendor-specific key header.
        timeout: Overall client timeout in seconds.  The controller
            applies its own first-byte timeout on top.
        http_client: Optional ``httpx.AsyncClient`` for the SDK.
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        default_headers: dict[str, str] | None = None,
        timeout: float = 600.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        if not api_key:
            api_key = os.getenv("OPENAI_API_KEY") or "EMPTY"
        self.client = AsyncOpenAI(
            base_url=base_url,
            api_key=api_key,
            default_headers={"Cache-Control": "no-store", **(default_headers or {})},
            max_retries=0,
            timeout=timeout,
            http_client=http_client,
        )

    @asynccontextmanager
    async def stream(self, payload: RequestPayload) -> AsyncIterator[StreamedResponse]:
        body = payload.to_body()
        body["stream"] = True
        try:
            async with self.client.chat.completions.with_streaming_response.create(
                **body
            ) as response:
                yield StreamedResponse(
                    raw=response.http_response,
                    status_code=response.status_code,
                    content_type=response.headers.get("content-type", ""),
                    lines=iter_lines(response.iter_bytes()),
                    read_text=response.text,
                )
        except APIStatusError as e:
            raise UpstreamNonSuccess(e.status_code, _error_body(e)) from e
        except APIConnectionError as e:
            raise UpstreamUnreachable(str(e)) from e
        except httpx.TransportError as e:
            raise UpstreamUnreachable(str(e) or type(e).__name__) from e

    async def complete(self, payload: RequestPayload) -> CompletedResponse:
        body = payload.to_body()
        body["stream"] = False
        try:
            raw = await self.client.chat.completions.with_raw_response.create(**body)
        except APIStatusError as e:
            raise UpstreamNonSuccess(e.status_code, _error_body(e)) from e
        except APIConnectionError as e:
            raise UpstreamUnreachable(str(e)) from e

        completion = raw.parse()
        message = completion.choices[0].message if completion.choices else None
        return CompletedResponse(
            raw=raw.http_response,
            content=(message.content if message else None) or "",
            tool_calls=(message.tool_calls if message else None) or [],
            usage=completion.usage,
        )


def _error_body(error: APIStatusError) -> str:
    try:
        return json.dumps(error.response.json(), ensure_ascii=False)
    except (ValueError, httpx.ResponseNotRead):
        return error.message
