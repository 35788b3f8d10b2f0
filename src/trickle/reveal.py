"""Paced reveal of streamed answer text.

Network delivery is bursty: a whole paragraph may land in one chunk,
or a word may trickle in over a dozen.  :class:`RevealScheduler`
buffers whatever arrives and re-emits it in small slices on a fixed
tick so the visible text grows at an even rate.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Awaitable, Callable
from typing import Any

from trickle.errors import ChatError, EmptyResponse

logger = logging.getLogger(__name__)

# One tick moves roughly 1/60th of the backlog.
SLICE_DIVISOR = 60


class RevealScheduler:
    """Buffers answer text and reveals it one slice per tick.

    ``revealed + pending`` always equals everything pushed so far.
    Exactly one terminal callback fires per scheduler: ``on_finish``
    with the complete text, or ``on_error``.

    Args:
        on_update: Called with ``(revealed_so_far, slice)`` after each
            step that moves text.
        on_finish: Called once with the complete text.
        on_error: Called once with the terminal error.
        interval: Seconds between pacing ticks.
        sleep: Awaitable used to wait one tick.
    """

    def __init__(
        self,
        on_update: Callable[[str, str], Any] | None = None,
        on_finish: Callable[[str], Any] | None = None,
        on_error: Callable[[ChatError], Any] | None = None,
        interval: float = 1 / 60,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.on_update = on_update
        self.on_finish = on_finish
        self.on_error = on_error
        self.interval = interval
        self._sleep = sleep
        self.revealed = ""
        self.pending = ""
        self._terminal = False

    @property
    def finished(self) -> bool:
        return self._terminal

    @property
    def text(self) -> str:
        return self.revealed + self.pending

    def push(self, chunk: str) -> None:
        if self._terminal:
            logger.debug("Ignoring text pushed after the reveal finished")
            return
        self.pending += chunk

    def step(self) -> str:
        """Move one slice from pending to revealed."""
        if not self.pending:
            return ""
        count = max(1, math.floor(len(self.pending) / SLICE_DIVISOR + 0.5))
        piece = self.pending[:count]
        self.pending = self.pending[count:]
        self.revealed += piece
        self._notify(piece)
        return piece

    async def run(self) -> None:
        """Step on every tick until a terminal transition."""
        while not self._terminal:
            self.step()
            await self._sleep(self.interval)

    def flush(self) -> None:
        if self.pending:
            piece = self.pending
            self.pending = ""
            self.revealed += piece
            self._notify(piece)

    def finish(self, allow_empty: bool = False) -> bool:
        """Flush and fire the terminal callback.

        With nothing revealed and nothing pending, reports
        :class:`EmptyResponse` through ``on_error`` unless
        ``allow_empty`` is set.  Returns False if already terminal.
        """
        if self._terminal:
            return False
        self.flush()
        if not self.revealed and not allow_empty:
            return self.fail(EmptyResponse())
        self._terminal = True
        logger.debug(f"Reveal finished with {len(self.revealed)} chars")
        if self.on_finish is not None:
            self.on_finish(self.revealed)
        return True

    def fail(self, error: ChatError) -> bool:
        if self._terminal:
            return False
        self._terminal = True
        if self.on_error is not None:
            self.on_error(error)
        return True

    def cancel(self) -> bool:
        """Fold pending text in without pacing and finish at once."""
        if self._terminal:
            return False
        self.revealed += self.pending
        self.pending = ""
        return self.finish(allow_empty=True)

    def _notify(self, piece: str) -> None:
        if self.on_update is not None:
            self.on_update(self.revealed, piece)
