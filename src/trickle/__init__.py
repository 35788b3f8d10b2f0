"""Relay streamed chat completions and reassemble them from partial frames."""

from trickle.config import Settings, get_settings
from trickle.controller import (
    AbortHandle,
    ChatCallbacks,
    ChatResult,
    ChatSessionController,
    ExchangeState,
)
from trickle.errors import (
    ChatError,
    EmptyResponse,
    MalformedFrame,
    OrphanToolFragment,
    RequestTimeout,
    ToolArgumentsError,
    UpstreamNonSuccess,
    UpstreamUnreachable,
)
from trickle.frames import FrameDecoder
from trickle.heartbeat import HeartbeatInjector
from trickle.instrumentation import instrument, uninstrument
from trickle.message import ChatRequest, Message, MessageRole, RequestPayload
from trickle.provider import ModelProvider, OpenAICompatibleProvider
from trickle.relay import RelayRequest, RelayResponse, UpstreamRelay
from trickle.reveal import RevealScheduler
from trickle.streaming import ToolCall, ToolCallAccumulator, ToolCallFragment
from trickle.tools import Tool, ToolRegistry, tool

__all__ = [
    "AbortHandle",
    "ChatCallbacks",
    "ChatError",
    "ChatRequest",
    "ChatResult",
    "ChatSessionController",
    "EmptyResponse",
    "ExchangeState",
    "FrameDecoder",
    "HeartbeatInjector",
    "MalformedFrame",
    "Message",
    "MessageRole",
    "ModelProvider",
    "OpenAICompatibleProvider",
    "OrphanToolFragment",
    "RelayRequest",
    "RelayResponse",
    "RequestPayload",
    "RequestTimeout",
    "RevealScheduler",
    "Settings",
    "Tool",
    "ToolArgumentsError",
    "ToolCall",
    "ToolCallAccumulator",
    "ToolCallFragment",
    "ToolRegistry",
    "UpstreamNonSuccess",
    "UpstreamRelay",
    "UpstreamUnreachable",
    "get_settings",
    "instrument",
    "tool",
    "uninstrument",
]
