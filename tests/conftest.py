import asyncio
import json
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

import pytest

from trickle.config import Settings
from trickle.controller import ChatCallbacks
from trickle.errors import ChatError
from trickle.provider import CompletedResponse, ModelProvider, StreamedResponse
from trickle.tools import tool


# ---------------------------------------------------------------------------
# Frame builders (mirror the chat.completion.chunk wire shape)
# ---------------------------------------------------------------------------

def chunk(
    content: str | None = None,
    reasoning: str | None = None,
    tool_calls: list[dict] | None = None,
) -> str:
    """One ``data:`` line carrying a single delta."""
    delta: dict = {}
    if content is not None:
        delta["content"] = content
    if reasoning is not None:
        delta["reasoning_content"] = reasoning
    if tool_calls is not None:
        delta["tool_calls"] = tool_calls
    body = {
        "object": "chat.completion.chunk",
        "choices": [{"index": 0, "delta": delta}],
    }
    return f"data: {json.dumps(body)}"


def tool_fragment(
    index: int,
    arguments: str,
    call_id: str | None = None,
    name: str | None = None,
) -> dict:
    function: dict = {"arguments": arguments}
    if name is not None:
        function["name"] = name
    fragment: dict = {"index": index, "function": function}
    if call_id is not None:
        fragment["id"] = call_id
        fragment["type"] = "function"
    return fragment


DONE = "data: [DONE]"


# ---------------------------------------------------------------------------
# Mock provider
# ---------------------------------------------------------------------------

@dataclass
class MockStream:
    """One scripted streamed exchange.

    ``hang`` keeps the stream open after the last line until cancelled.
    """

    lines: list[str] = field(default_factory=list)
    content_type: str = "text/event-stream"
    status_code: int = 200
    line_delay: float = 0.0
    open_delay: float = 0.0
    hang: bool = False
    error: ChatError | None = None


@dataclass
class MockFunction:
    name: str
    arguments: str


@dataclass
class MockToolCall:
    id: str
    type: str
    function: MockFunction


class MockProvider(ModelProvider):
    """Provider that replays pre-queued exchanges.  No network calls."""

    def __init__(self):
        self.streams: list[MockStream] = []
        self.completions: list[CompletedResponse | ChatError] = []
        self.call_log: list[dict] = []
        self.closed = 0

    @asynccontextmanager
    async def stream(self, payload):
        self.call_log.append(payload.to_body())
        scripted = self.streams.pop(0)
        if scripted.open_delay:
            await asyncio.sleep(scripted.open_delay)
        if scripted.error is not None:
            raise scripted.error

        async def lines():
            for line in scripted.lines:
                if scripted.line_delay:
                    await asyncio.sleep(scripted.line_delay)
                yield line
            if scripted.hang:
                await asyncio.Event().wait()

        async def read_text():
            return "\n".join(scripted.lines)

        try:
            yield StreamedResponse(
                raw={"status": scripted.status_code},
                status_code=scripted.status_code,
                content_type=scripted.content_type,
                lines=lines(),
                read_text=read_text,
            )
        finally:
            self.closed += 1

    async def complete(self, payload):
        self.call_log.append(payload.to_body())
        result = self.completions.pop(0)
        if isinstance(result, ChatError):
            raise result
        return result


def make_completion(content: str = "", tool_calls: list | None = None) -> CompletedResponse:
    return CompletedResponse(
        raw={"status": 200},
        content=content,
        tool_calls=tool_calls or [],
    )


def make_tool_call(name: str, args: dict, call_id: str = "call_1") -> MockToolCall:
    return MockToolCall(
        id=call_id,
        type="function",
        function=MockFunction(name=name, arguments=json.dumps(args)),
    )


# ---------------------------------------------------------------------------
# Callback recorder
# ---------------------------------------------------------------------------

class Recorder:
    """Collects every callback the controller fires."""

    def __init__(self):
        self.updates: list[tuple[str, str]] = []
        self.reasoning: list[tuple[str, str]] = []
        self.finished: list[tuple[str, object]] = []
        self.errors: list[Exception] = []
        self.handle = None

    def callbacks(self, **overrides):
        hooks = dict(
            on_update=lambda text, delta: self.updates.append((text, delta)),
            on_finish=lambda text, raw: self.finished.append((text, raw)),
            on_error=self.errors.append,
            on_controller=self._keep_handle,
            on_reasoning=lambda text, delta: self.reasoning.append((text, delta)),
        )
        hooks.update(overrides)
        return ChatCallbacks(**hooks)

    def _keep_handle(self, handle):
        self.handle = handle

    @property
    def terminal_count(self) -> int:
        return len(self.finished) + len(self.errors)


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------

@tool
def echo(text: str):
    """Echo the input.

    Args:
        text: Text to send back.
    """
    return text


@tool
async def add(a: int, b: int):
    """Add two numbers."""
    return {"sum": a + b}


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def settings():
    return Settings(
        upstream_base_url="https://upstream.test",
        upstream_api_key=None,
        heartbeat_interval=0.02,
        heartbeat_max_beats=5,
        request_timeout=2.0,
        thinking_request_timeout=5.0,
        reveal_interval=0.001,
        max_tool_rounds=3,
    )


@pytest.fixture
def mock_provider():
    return MockProvider()


@pytest.fixture
def recorder():
    return Recorder()
