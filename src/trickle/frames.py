"""Decoding of upstream event-stream frames into deltas.

Each line of an event stream decodes to zero or more :class:`Delta`
values.  Frames that cannot be parsed decode to :class:`Malformed`
instead of raising, so one bad frame never ends the stream.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass

from trickle.streaming import ToolCallFragment

logger = logging.getLogger(__name__)

DONE_TOKEN = "[DONE]"

_IGNORED_FIELDS = ("event:", "id:", "retry:")


@dataclass
class Delta:
    """Base for all decoded deltas."""


@dataclass
class Reasoning(Delta):
    text: str = ""


@dataclass
class Content(Delta):
    text: str = ""


@dataclass
class ToolCallDelta(Delta):
    fragment: ToolCallFragment | None = None


@dataclass
class Done(Delta):
    """The upstream sent its terminal token."""


@dataclass
class Malformed(Delta):
    raw: str = ""


@dataclass
class UpstreamError(Delta):
    """A synthetic error frame written by the relay."""

    message: str = ""
    status: int | None = None




def _expect(value, kind: type, what: str):
    if not isinstance(value, kind) or isinstance(value, bool):
        raise TypeError(f"{what} is {type(value).__name__}, expected {kind.__name__}")
    return value


class FrameDecoder:
    """Turns event-stream lines into deltas.

    Understands OpenAI-style ``chat.completion.chunk`` frames and
    Gemini-style ``candidates`` frames.  Within a frame, tool-call
    fragments come first, then at most one text delta: reasoning wins
    over content when both are present.

    Use one decoder per exchange.  Gemini frames carry no tool-call
    index, so the decoder numbers their function calls itself.

    Args:
        done_token: Payload that marks the end of the stream.
    """

    def __init__(self, done_token: str = DONE_TOKEN):
        self.done_token = done_token
        self._gemini_calls = 0

    def decode(self, frame: str) -> list[Delta]:
        line = frame.strip()
        if not line or line.startswith(":"):
            return []
        if line.startswith("data:"):
            line = line[len("data:"):].strip()
        elif line.startswith(_IGNORED_FIELDS):
            return []
        if not line:
            return []
        if line == self.done_token:
            return [Done()]

        try:
            obj = json.loads(line)
        except json.JSONDecodeError:
            return [Malformed(raw=frame)]
        if not isinstance(obj, dict):
            return [Malformed(raw=frame)]

        if obj.get("error"):
            return [self._decode_error(obj)]
        try:
            if "candidates" in obj:
                return self._decode_candidates(obj)
            return self._decode_choices(obj)
        except TypeError as e:
            logger.debug(f"Unexpected frame shape: {e}")
            return [Malformed(raw=frame)]

    def _decode_error(self, obj: dict) -> UpstreamError:
        error = obj["error"]
        if isinstance(error, dict):
            message = error.get("message") or json.dumps(error)
        else:
            message = str(error)
        status = obj.get("status")
        return UpstreamError(
            message=message,
            status=status if isinstance(status, int) else None,
        )

    def _decode_choices(self, obj: dict) -> list[Delta]:
        choices = obj.get("choices")
        if not choices:
            return []
        _expect(choices, list, "choices")
        choice = _expect(choices[0], dict, "choice")
        delta = _expect(choice.get("delta") or {}, dict, "delta")

        deltas: list[Delta] = []
        calls = _expect(delta.get("tool_calls") or [], list, "tool_calls")
        for position, call in enumerate(calls):
            _expect(call, dict, "tool call")
            function = _expect(call.get("function") or {}, dict, "function")
            deltas.append(ToolCallDelta(fragment=ToolCallFragment(
                index=_expect(call.get("index", position), int, "index"),
                call_id=call.get("id"),
                name=function.get("name"),
                type=call.get("type"),
                arguments_delta=_expect(function.get("arguments") or "", str, "arguments"),
            )))

        reasoning = delta.get("reasoning_content") or delta.get("reasoning")
        content = delta.get("content")
        if reasoning:
            deltas.append(Reasoning(text=_expect(reasoning, str, "reasoning")))
        elif content:
            deltas.append(Content(text=_expect(content, str, "content")))
        return deltas

    def _decode_candidates(self, obj: dict) -> list[Delta]:
        candidates = obj.get("candidates")
        if not candidates:
            return []
        _expect(candidates, list, "candidates")
        candidate = _expect(candidates[0], dict, "candidate")
        content = _expect(candidate.get("content") or {}, dict, "content")
        parts = _expect(content.get("parts") or [], list, "parts")

        deltas: list[Delta] = []
        thought, text = "", ""
        for part in parts:
            _expect(part, dict, "part")
            call = part.get("functionCall")
            if call:
                _expect(call, dict, "functionCall")
                deltas.append(ToolCallDelta(fragment=ToolCallFragment(
                    index=self._gemini_calls,
                    call_id=f"call_{uuid.uuid4().hex[:12]}",
                    name=call.get("name"),
                    arguments_delta=json.dumps(_expect(call.get("args") or {}, dict, "args")),
                )))
                self._gemini_calls += 1
            elif part.get("thought"):
                thought += _expect(part.get("text") or "", str, "text")
            else:
                text += _expect(part.get("text") or "", str, "text")

        if thought:
            deltas.append(Reasoning(text=thought))
        elif text:
            deltas.append(Content(text=text))
        return deltas
