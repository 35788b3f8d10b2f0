from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_serializer


class MessageRole(Enum):
    SYSTEM = "system"
    ASSISTANT = "assistant"
    USER = "user"
    TOOL = "tool"


class Message(BaseModel):
    role: MessageRole
    # Plain text, or a list of multimodal parts passed through verbatim.
    content: str | list[dict[str, Any]]

    @field_serializer('role')
    def serialize_role(self, role: MessageRole, _info) -> str:
        return role.value


class ToolCallRequestMessage(Message):
    content: str | list[dict[str, Any]] = ""
    tool_calls: list

    @field_serializer("tool_calls")
    def serialize_tool_calls(self, tool_calls: list) -> list[dict]:
        return [
            {
                "id": t.id,
                "type": t.type or "function",
                "function": {
                    "arguments": t.arguments,
                    "name": t.name
                }
            }
            for t in tool_calls
        ]


class ToolCallResultMessage(Message):
    tool_call_id: str


class ChatRequest(BaseModel):
    """An inbound chat request from the UI side."""

    messages: list[Message]
    model: str
    stream: bool = True
    temperature: float = 0.5
    presence_penalty: float = 0.0
    frequency_penalty: float = 0.0
    top_p: float = 1.0
    max_tokens: int | None = None


class RequestPayload(BaseModel):
    """The body sent upstream for one exchange.

    Built once per exchange from a :class:`ChatRequest`; follow-up
    exchanges after tool calls extend ``messages`` in place.
    """

    messages: list[Message]
    model: str
    stream: bool
    temperature: float
    presence_penalty: float
    frequency_penalty: float
    top_p: float
    max_tokens: int | None = None
    tools: list[dict] | None = Field(default=None)

    @classmethod
    def from_request(
        cls, request: ChatRequest, tools: list[dict] | None = None
    ) -> "RequestPayload":
        return cls(
            messages=list(request.messages),
            model=request.model,
            stream=request.stream,
            temperature=request.temperature,
            presence_penalty=request.presence_penalty,
            frequency_penalty=request.frequency_penalty,
            top_p=request.top_p,
            max_tokens=request.max_tokens,
            tools=tools or None,
        )

    def to_body(self) -> dict:
        """Serialize to the upstream JSON body, dropping unset options."""
        body = self.model_dump(exclude={"messages"}, exclude_none=True)
        body["messages"] = [m.model_dump() for m in self.messages]
        return body
