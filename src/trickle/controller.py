"""Top-level orchestration of one chat turn.

:class:`ChatSessionController` builds the request, sends it through a
:class:`~trickle.provider.ModelProvider`, decodes the streamed frames,
paces the answer through a :class:`~trickle.reveal.RevealScheduler`,
and loops through tool-call follow-ups until the model produces a
final answer.  Every turn ends in exactly one of ``on_finish`` or
``on_error``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from trickle.config import Settings
from trickle.errors import (
    ChatError,
    MalformedFrame,
    RequestTimeout,
    UpstreamNonSuccess,
)
from trickle.frames import (
    Content,
    Done,
    FrameDecoder,
    Malformed,
    Reasoning,
    ToolCallDelta,
    UpstreamError,
)
from trickle.instrumentation import exchange_span, record_error, record_usage
from trickle.message import (
    ChatRequest,
    MessageRole,
    RequestPayload,
    ToolCallRequestMessage,
    ToolCallResultMessage,
)
from trickle.provider import ModelProvider
from trickle.reveal import RevealScheduler
from trickle.streaming import ToolCall, ToolCallAccumulator

logger = logging.getLogger(__name__)

ToolRunner = Callable[[ToolCall], Awaitable[ToolCallResultMessage]]


class ExchangeState(Enum):
    BUILDING = "building"
    SENT = "sent"
    STREAMING = "streaming"
    FINISHED = "finished"
    ERRORED = "errored"
    CANCELLED = "cancelled"


@dataclass
class ChatCallbacks:
    """Hooks the UI side passes in with a chat request.

    Args:
        on_update: ``(text_so_far, delta)`` as answer text is revealed.
        on_finish: ``(final_text, raw_response)`` on success or cancel.
        on_error: Called with the :class:`~trickle.errors.ChatError`.
        on_controller: Receives the :class:`AbortHandle` for the turn.
        on_reasoning: ``(reasoning_so_far, delta)`` for reasoning text.
    """

    on_update: Callable[[str, str], Any] | None = None
    on_finish: Callable[[str, Any], Any] | None = None
    on_error: Callable[[ChatError], Any] | None = None
    on_controller: Callable[["AbortHandle"], Any] | None = None
    on_reasoning: Callable[[str, str], Any] | None = None


class AbortHandle:
    """Cancels an in-flight chat turn.

    Safe to call before the turn has started; the turn then ends as
    cancelled without sending anything.
    """

    def __init__(self) -> None:
        self.aborted = False
        self.timed_out = False
        self._task: asyncio.Task | None = None

    def abort(self) -> None:
        if self.aborted:
            return
        self.aborted = True
        if self._task is not None:
            self._task.cancel()

    def expire(self) -> None:
        """Abort because the request timeout elapsed."""
        if not self.aborted:
            self.timed_out = True
        self.abort()

    def bind(self, task: asyncio.Task) -> None:
        self._task = task
        if self.aborted:
            task.cancel()


@dataclass
class ChatResult:
    """Outcome of one chat turn, mirroring the terminal callback."""

    state: ExchangeState
    text: str = ""
    reasoning: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    raw_response: Any = None
    error: ChatError | None = None


class _Turn:
    """Mutable state for one logical user turn.

    Lives across tool-call follow-ups and is dropped when the turn
    ends.
    """

    def __init__(self, request: ChatRequest, callbacks: ChatCallbacks, settings: Settings):
        self.request = request
        self.callbacks = callbacks
        self.state = ExchangeState.BUILDING
        self.reasoning = ""
        self.tool_calls: list[ToolCall] = []
        self.raw_response: Any = None
        self.error: ChatError | None = None
        self.scheduler = RevealScheduler(
            on_update=callbacks.on_update,
            on_finish=self._finished,
            on_error=self._errored,
            interval=settings.reveal_interval,
        )

    def transition(self, state: ExchangeState) -> None:
        logger.debug(f"{self.request.model}: {self.state.value} -> {state.value}")
        self.state = state

    def add_reasoning(self, text: str) -> None:
        self.reasoning += text
        if self.callbacks.on_reasoning is not None:
            self.callbacks.on_reasoning(self.reasoning, text)

    def _finished(self, text: str) -> None:
        if self.state is not ExchangeState.CANCELLED:
            self.transition(ExchangeState.FINISHED)
        if self.callbacks.on_finish is not None:
            self.callbacks.on_finish(text, self.raw_response)

    def _errored(self, error: ChatError) -> None:
        self.transition(ExchangeState.ERRORED)
        self.error = error
        if self.callbacks.on_error is not None:
            self.callbacks.on_error(error)

    def result(self) -> ChatResult:
        return ChatResult(
            state=self.state,
            text=self.scheduler.text,
            reasoning=self.reasoning,
            tool_calls=list(self.tool_calls),
            raw_response=self.raw_response,
            error=self.error,
        )


class ChatSessionController:
    """Drives chat turns against a provider.

    Turns are independent: each one owns its payload, decoder,
    accumulator and scheduler, and only ``settings`` is shared.

    Args:
        provider: Transport used to reach the model.
        settings: Timeouts, pacing and tool-loop bounds.
        tool_runner: Executes finalized tool calls.  A
            :class:`~trickle.tools.ToolRegistry` works here.
        tools: Tool schemas sent with each request.  Defaults to the
            runner's ``schemas()`` when it has one.
    """

    def __init__(
        self,
        provider: ModelProvider,
        settings: Settings,
        tool_runner: ToolRunner | None = None,
        tools: list[dict] | None = None,
    ):
        self.provider = provider
        self.settings = settings
        self.tool_runner = tool_runner
        if tools is None and hasattr(tool_runner, "schemas"):
            tools = tool_runner.schemas()
        self.tools = tools or None

    async def chat(self, request: ChatRequest, callbacks: ChatCallbacks | None = None) -> ChatResult:
        """Run one user turn to completion.

        Never raises :class:`~trickle.errors.ChatError`; the outcome is
        reported through the callbacks and returned.
        """
        callbacks = callbacks or ChatCallbacks()
        turn = _Turn(request, callbacks, self.settings)
        abort = AbortHandle()
        if callbacks.on_controller is not None:
            callbacks.on_controller(abort)

        work = asyncio.create_task(self._drive(turn, abort))
        abort.bind(work)
        pacer = asyncio.create_task(turn.scheduler.run()) if request.stream else None
        try:
            await work
            turn.scheduler.finish(allow_empty=not request.stream)
        except asyncio.CancelledError:
            if not abort.aborted:
                raise
            if abort.timed_out:
                logger.warning(f"{request.model}: no response within the request timeout")
                turn.scheduler.fail(RequestTimeout(
                    f"no response from {request.model} within "
                    f"{self.settings.timeout_for_model(request.model)}s"
                ))
            else:
                logger.info(f"{request.model}: cancelled")
                turn.transition(ExchangeState.CANCELLED)
                turn.scheduler.cancel()
        except ChatError as e:
            logger.warning(f"{request.model}: {e}")
            turn.scheduler.fail(e)
        except Exception as e:
            logger.exception(f"{request.model}: exchange failed")
            turn.scheduler.fail(ChatError(str(e)))
        finally:
            if pacer is not None:
                pacer.cancel()
                await asyncio.wait([pacer])
                if not pacer.cancelled() and pacer.exception() is not None:
                    logger.error(
                        f"{request.model}: reveal pacing failed",
                        exc_info=pacer.exception(),
                    )
        return turn.result()

    async def _drive(self, turn: _Turn, abort: AbortHandle) -> None:
        payload = RequestPayload.from_request(turn.request, tools=self.tools)
        for round_ in range(self.settings.max_tool_rounds + 1):
            if turn.request.stream:
                calls = await self._stream_exchange(turn, payload, abort)
            else:
                calls = await self._buffered_exchange(turn, payload, abort)

            if not calls:
                return
            turn.tool_calls.extend(calls)
            if self.tool_runner is None:
                logger.warning(
                    f"{turn.request.model}: model requested {len(calls)} tool "
                    f"call(s) but no tool runner is configured"
                )
                return
            if round_ == self.settings.max_tool_rounds:
                break
            await self._run_tools(payload, calls)
            turn.transition(ExchangeState.BUILDING)

        logger.warning(
            f"{turn.request.model}: stopped after "
            f"{self.settings.max_tool_rounds} tool rounds"
        )

    async def _run_tools(self, payload: RequestPayload, calls: list[ToolCall]) -> None:
        results = [await self.tool_runner(tc) for tc in calls]
        payload.messages.append(ToolCallRequestMessage(
            role=MessageRole.ASSISTANT, tool_calls=calls,
        ))
        payload.messages.extend(results)

    def _arm_timeout(self, turn: _Turn, abort: AbortHandle) -> asyncio.TimerHandle:
        timeout = self.settings.timeout_for_model(turn.request.model)
        return asyncio.get_running_loop().call_later(timeout, abort.expire)

    async def _stream_exchange(
        self, turn: _Turn, payload: RequestPayload, abort: AbortHandle,
    ) -> list[ToolCall]:
        acc = ToolCallAccumulator()
        decoder = FrameDecoder()
        async with exchange_span(payload.model, stream=True) as span:
            turn.transition(ExchangeState.SENT)
            timer = self._arm_timeout(turn, abort)
            try:
                async with self.provider.stream(payload) as response:
                    timer.cancel()
                    turn.raw_response = response.raw
                    turn.transition(ExchangeState.STREAMING)

                    if response.content_type.startswith("text/plain"):
                        turn.scheduler.push(await response.read_text())
                        return []
                    if not response.content_type.startswith("text/event-stream"):
                        raise UpstreamNonSuccess(
                            response.status_code, await response.read_text(),
                        )

                    async for line in response.lines:
                        if self._apply(turn, decoder, acc, line):
                            break
            except ChatError as e:
                record_error(span, e)
                raise
            finally:
                timer.cancel()
        return acc.finalize()

    def _apply(
        self, turn: _Turn, decoder: FrameDecoder, acc: ToolCallAccumulator, line: str,
    ) -> bool:
        """Feed one frame into the turn.  Returns True on the end marker."""
        for delta in decoder.decode(line):
            if isinstance(delta, Done):
                return True
            if isinstance(delta, ToolCallDelta):
                acc.merge(delta.fragment)
            elif isinstance(delta, Reasoning):
                turn.add_reasoning(delta.text)
            elif isinstance(delta, Content):
                turn.scheduler.push(delta.text)
            elif isinstance(delta, Malformed):
                logger.warning(f"Skipping {MalformedFrame(delta.raw)}")
            elif isinstance(delta, UpstreamError):
                raise UpstreamNonSuccess(delta.status, delta.message)
        return False

    async def _buffered_exchange(
        self, turn: _Turn, payload: RequestPayload, abort: AbortHandle,
    ) -> list[ToolCall]:
        async with exchange_span(payload.model, stream=False) as span:
            turn.transition(ExchangeState.SENT)
            timer = self._arm_timeout(turn, abort)
            try:
                completed = await self.provider.complete(payload)
            except ChatError as e:
                record_error(span, e)
                raise
            finally:
                timer.cancel()
            record_usage(span, completed.usage, payload.model)

        turn.raw_response = completed.raw
        turn.transition(ExchangeState.STREAMING)
        turn.scheduler.push(completed.content)
        return [
            ToolCall(
                id=tc.id,
                name=tc.function.name,
                arguments=tc.function.arguments or "",
                type=tc.type or "function",
            )
            for tc in completed.tool_calls
        ]
