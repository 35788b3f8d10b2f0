"""Streaming primitives for tool calls.

Tool calls arrive split across many deltas.  The
:class:`ToolCallAccumulator` reassembles them into complete
:class:`ToolCall` objects keyed by their position in the response.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field

from trickle.errors import OrphanToolFragment, ToolArgumentsError

logger = logging.getLogger(__name__)


@dataclass
class ToolCallFragment:
    """A fragment of a tool call from a streaming delta.

    A fragment carrying ``call_id`` opens the entry at ``index``; one
    without it continues the entry already open there.
    """

    index: int
    call_id: str | None = None
    name: str | None = None
    type: str | None = None
    arguments_delta: str = ""


@dataclass
class ToolCall:
    """A resolved tool call ready for the transcript."""

    id: str = ""
    name: str = ""
    arguments: str = ""
    type: str = "function"

    def parse_arguments(self) -> dict:
        """Parse the accumulated argument buffer as one JSON object.

        Raises:
            ToolArgumentsError: If the buffer is not valid JSON or does
                not decode to an object.
        """
        if not self.arguments.strip():
            return {}
        try:
            params = json.loads(self.arguments)
        except json.JSONDecodeError as e:
            raise ToolArgumentsError(
                f"invalid arguments for {self.name}: {e}"
            ) from e
        if not isinstance(params, dict):
            raise ToolArgumentsError(
                f"arguments for {self.name} must be a JSON object"
            )
        return params


@dataclass
class ToolCallAccumulator:
    """Assembles complete tool calls from streaming fragments."""

    _pending: dict[int, ToolCall] = field(default_factory=dict)
    orphans: list[ToolCallFragment] = field(default_factory=list)

    def merge(self, fragment: ToolCallFragment) -> bool:
        """Apply one fragment.  Returns False if it was dropped."""
        if fragment.call_id:
            self._pending[fragment.index] = ToolCall(
                id=fragment.call_id,
                name=fragment.name or "",
                arguments=fragment.arguments_delta or "",
                type=fragment.type or "function",
            )
            return True

        tc = self._pending.get(fragment.index)
        if tc is None:
            logger.warning(str(OrphanToolFragment(fragment.index)))
            self.orphans.append(fragment)
            return False
        if fragment.arguments_delta:
            tc.arguments += fragment.arguments_delta
        return True

    def finalize(self) -> list[ToolCall]:
        """Return completed tool calls in index order."""
        return [self._pending[i] for i in sorted(self._pending)]

    def reset(self) -> None:
        self._pending.clear()
        self.orphans.clear()

    def __len__(self) -> int:
        return len(self._pending)
