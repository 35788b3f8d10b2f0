"""Server-side relay to the upstream model provider.

:class:`UpstreamRelay` forwards one inbound chat request to the
provider.  Streamed calls come back as a live byte stream that starts
with heartbeat frames and switches to upstream bytes as soon as the
first one arrives; buffered calls come back as a plain response with
the upstream's auth challenge removed.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Mapping
from dataclasses import dataclass, field
from urllib.parse import parse_qs

import httpx

from trickle.config import Settings
from trickle.errors import UpstreamUnreachable
from trickle.heartbeat import HeartbeatInjector
from trickle.instrumentation import record_error, relay_span
from trickle.sse import (
    encode_event,
    error_frame,
    gemini_heartbeat_payload,
    heartbeat_payload,
)

logger = logging.getLogger(__name__)

STREAM_HEADERS = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

# Never handed back to the caller.
_STRIPPED_HEADERS = {
    "www-authenticate",
    "content-length",
    "content-encoding",
    "transfer-encoding",
    "connection",
}


@dataclass
class RelayRequest:
    """An inbound request as seen by the relay.

    Args:
        method: HTTP method, mirrored to the upstream.
        path: Path appended to the upstream base URL.
        body: Raw request body, forwarded unmodified.
        headers: Inbound headers; only the API-key header is forwarded.
        query: Raw query string, forwarded unmodified.
    """

    method: str
    path: str
    body: bytes = b""
    headers: Mapping[str, str] = field(default_factory=dict)
    query: str = ""

    @property
    def gemini_style(self) -> bool:
        """Gemini asks for event streams with ``alt=sse``."""
        return parse_qs(self.query).get("alt") == ["sse"]

    @property
    def stream(self) -> bool:
        if self.gemini_style:
            return True
        if not self.body:
            return False
        try:
            payload = json.loads(self.body)
        except (json.JSONDecodeError, UnicodeDecodeError):
            return False
        return isinstance(payload, dict) and payload.get("stream") is True


@dataclass
class RelayResponse:
    """What the relay hands back: a buffered body or a live stream."""

    status_code: int
    headers: list[tuple[str, str]]
    body: bytes = b""
    stream: AsyncIterator[bytes] | None = None


class UpstreamRelay:
    """Owns the outbound connection to the provider.

    Args:
        settings: Upstream URL, key header and heartbeat configuration.
        client: HTTP client to use.  When omitted the relay creates one
            and closes it in :meth:`aclose`.
    """

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None):
        self.settings = settings
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(None, connect=settings.connect_timeout),
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    def url_for(self, request: RelayRequest) -> str:
        base = self.settings.upstream_base_url
        if not base.startswith("http"):
            base = f"https://{base}"
        url = f"{base.rstrip('/')}/{request.path.lstrip('/')}"
        return f"{url}?{request.query}" if request.query else url

    def outbound_headers(self, request: RelayRequest) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Cache-Control": "no-store",
        }
        key_header = self.settings.api_key_header
        inbound = {k.lower(): v for k, v in request.headers.items()}
        key = inbound.get(key_header.lower())
        if key:
            headers[key_header] = key
        elif self.settings.upstream_api_key:
            headers[key_header] = f"{self.settings.api_key_prefix}{self.settings.upstream_api_key}"
        return headers

    async def send(self, request: RelayRequest) -> RelayResponse:
        """Forward *request* upstream.

        Streamed requests return immediately with a live stream;
        buffered requests wait for the full upstream response.

        Raises:
            UpstreamUnreachable: A buffered call could not reach the
                upstream.  Streamed calls report this as an error frame.
        """
        if request.stream:
            return RelayResponse(
                status_code=200,
                headers=list(STREAM_HEADERS.items()),
                stream=self._relay_stream(request),
            )
        return await self._relay_buffered(request)

    async def _relay_buffered(self, request: RelayRequest) -> RelayResponse:
        url = self.url_for(request)
        async with relay_span(request.method, url, stream=False) as span:
            try:
                response = await self.client.request(
                    request.method,
                    url,
                    headers=self.outbound_headers(request),
                    content=request.body or None,
                )
            except httpx.TransportError as e:
                logger.error(f"Upstream request to {url} failed: {e}")
                record_error(span, e)
                raise UpstreamUnreachable(str(e)) from e

        headers = [
            (k, v) for k, v in response.headers.multi_items()
            if k.lower() not in _STRIPPED_HEADERS
        ]
        headers.append(("X-Accel-Buffering", "no"))
        return RelayResponse(
            status_code=response.status_code,
            headers=headers,
            body=response.content,
        )

    def _heartbeat_payload(self, request: RelayRequest) -> dict:
        if request.gemini_style:
            return gemini_heartbeat_payload(self.settings.heartbeat_text)
        return heartbeat_payload(self.settings.heartbeat_text)

    async def _relay_stream(self, request: RelayRequest) -> AsyncIterator[bytes]:
        heartbeat = HeartbeatInjector(
            frame=encode_event(self._heartbeat_payload(request)),
            interval=self.settings.heartbeat_interval,
            max_beats=self.settings.heartbeat_max_beats,
        )
        async for chunk in heartbeat.wrap(self._upstream_bytes(request)):
            yield chunk
        if heartbeat.expired:
            yield error_frame(
                f"no data from upstream after {heartbeat.beats} heartbeats",
                status=504,
            )

    async def _upstream_bytes(self, request: RelayRequest) -> AsyncIterator[bytes]:
        url = self.url_for(request)
        started = False
        async with relay_span(request.method, url, stream=True) as span:
            try:
                async with self.client.stream(
                    request.method,
                    url,
                    headers=self.outbound_headers(request),
                    content=request.body or None,
                ) as response:
                    if not response.is_success:
                        body = (await response.aread()).decode("utf-8", errors="replace")
                        logger.warning(
                            f"Upstream {url} returned {response.status_code}"
                        )
                        yield error_frame(body, status=response.status_code)
                        return
                    async for chunk in response.aiter_bytes():
                        started = True
                        yield chunk
            except httpx.TransportError as e:
                record_error(span, e)
                if started:
                    logger.error(f"Upstream stream from {url} broke: {e}")
                    return
                logger.error(f"Upstream request to {url} failed: {e}")
                yield error_frame(str(e) or type(e).__name__)
