import inspect
import json
import logging
import re
from typing import Any, Callable

from pydantic import BaseModel, Field

from trickle.errors import ToolArgumentsError
from trickle.instrumentation import record_error, tool_span
from trickle.message import MessageRole, ToolCallResultMessage
from trickle.streaming import ToolCall

logger = logging.getLogger(__name__)

_JSON_TYPES = {
    'str': 'string',
    'int': 'integer',
    'float': 'number',
    'bool': 'boolean',
    'NoneType': 'null',
    'dict': 'object',
    'list': 'array',
    'tuple': 'array',
    'set': 'array',
}


def _parse_param_descriptions(func: Callable) -> dict[str, str]:
    """Read ``Args:`` descriptions from a Google-style docstring."""
    doc = inspect.getdoc(func)
    if not doc:
        return {}

    descriptions: dict[str, str] = {}
    in_args = False
    current: str | None = None
    for line in doc.splitlines():
        if line.strip() in ("Args:", "Arguments:"):
            in_args = True
            continue
        if not in_args:
            continue
        if line and not line.startswith(" "):
            break
        match = re.match(r"^\s{2,4}(\w+)(?:\s*\([^)]*\))?:\s*(.*)$", line)
        if match:
            current = match.group(1)
            descriptions[current] = match.group(2).strip()
        elif current and line.strip():
            descriptions[current] += "\n" + line.strip()
    return descriptions


def _build_parameters_schema(func: Callable) -> tuple[dict, list[str]]:
    signature = inspect.signature(func)
    descriptions = _parse_param_descriptions(func)
    properties = {}
    required = []
    for name, param in signature.parameters.items():
        annotation = param.annotation
        type_name = getattr(annotation, "__name__", "str")
        properties[name] = {
            "type": _JSON_TYPES.get(type_name, "string"),
            "description": descriptions.get(name, ""),
        }
        if param.default is inspect.Parameter.empty:
            required.append(name)
    return {"type": "object", "properties": properties}, required


class Tool(BaseModel):
    func: Callable = Field(exclude=True)
    name: str
    description: str = ""
    parameters_schema: dict = Field(default_factory=dict)
    model_config = {"arbitrary_types_allowed": True}

    def model_dump(self, **kwargs):
        """Return the OpenAI function schema instead of the fields."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters_schema,
            },
        }

    async def __call__(self, **kwargs) -> Any:
        result = self.func(**kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result


def tool(func: Callable) -> Tool:
    """Turn a sync or async function into a :class:`Tool`.

    The schema is generated from the signature and the docstring's
    ``Args:`` section.
    """
    schema, required = _build_parameters_schema(func)
    schema["required"] = required
    summary = (inspect.getdoc(func) or "").split("\n\n")[0]
    return Tool(
        func=func,
        name=func.__name__,
        description=summary,
        parameters_schema=schema,
    )


class ToolRegistry:
    """Runs finalized tool calls against a set of known tools.

    Failures never escape: an unknown tool, arguments that do not parse,
    or an exception inside the tool all come back as the text of the
    result message so the model can see what went wrong.
    """

    def __init__(self, tools: list[Tool] | None = None):
        self.tools: dict[str, Tool] = {t.name: t for t in tools or []}

    def register(self, t: Tool) -> None:
        self.tools[t.name] = t

    def schemas(self) -> list[dict]:
        return [t.model_dump() for t in self.tools.values()]

    async def __call__(self, tc: ToolCall) -> ToolCallResultMessage:
        return ToolCallResultMessage(
            role=MessageRole.TOOL,
            content=await self._execute(tc),
            tool_call_id=tc.id,
        )

    async def _execute(self, tc: ToolCall) -> str:
        tool_obj = self.tools.get(tc.name)
        if tool_obj is None:
            logger.warning(f"Tool not found: {tc.name}")
            return f"Error: tool '{tc.name}' not found"

        try:
            params = tc.parse_arguments()
        except ToolArgumentsError as e:
            logger.warning(str(e))
            return f"Error: {e}"

        logger.info(f"Calling {tc.name} with {params}")
        async with tool_span(tc.name, tc.id) as span:
            try:
                result = await tool_obj(**params)
            except Exception as e:
                logger.error(f"Tool {tc.name} raised: {e}")
                record_error(span, e)
                return f"Error calling {tc.name}: {e}"

        return result if isinstance(result, str) else json.dumps(result, default=str)
