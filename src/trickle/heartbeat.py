"""Keep-alive frames for slow upstreams.

Proxies and load balancers drop connections that stay silent too long.
While the upstream is still thinking about its first byte,
:class:`HeartbeatInjector` writes filler frames so the outbound stream
is never idle.  The first real byte silences it for good.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterable, AsyncIterator

logger = logging.getLogger(__name__)

_EOF = object()


class HeartbeatInjector:
    """Interleaves heartbeat frames ahead of a real byte stream.

    Args:
        frame: The complete heartbeat frame, already SSE-encoded.
        interval: Seconds between heartbeats.
        max_beats: Upper bound on heartbeats for one exchange; once
            reached the wrapped stream is closed.
        backlog: Chunks read ahead of the consumer before reading from
            the source pauses.
    """

    def __init__(
        self, frame: bytes, interval: float = 5.0, max_beats: int = 60, backlog: int = 1,
    ):
        self.frame = frame
        self.interval = interval
        self.max_beats = max_beats
        self.backlog = backlog
        self.beats = 0
        self.expired = False
        self._stopped = False

    @property
    def active(self) -> bool:
        return not self._stopped and self.beats < self.max_beats

    def beat(self) -> bytes | None:
        """Return the next heartbeat frame, or None if no more are due."""
        if not self.active:
            return None
        self.beats += 1
        return self.frame

    def stop(self) -> None:
        """Permanently silence heartbeats."""
        if not self._stopped:
            logger.debug(f"Heartbeat stopped after {self.beats} beats")
        self._stopped = True

    async def wrap(self, source: AsyncIterable[bytes]) -> AsyncIterator[bytes]:
        """Yield heartbeats until *source* produces data, then *source*.

        This generator is the only writer of the outbound stream.  The
        first heartbeat goes out immediately.  If *source* stays silent
        for ``max_beats`` intervals the generator ends and ``expired`` is
        set.  Closing the generator cancels the task reading *source*.
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.backlog)
        pump = asyncio.create_task(self._pump(source, queue))
        try:
            first = self.beat()
            if first is not None:
                yield first
            while True:
                if self._stopped:
                    item = await queue.get()
                else:
                    try:
                        item = await asyncio.wait_for(queue.get(), self.interval)
                    except asyncio.TimeoutError:
                        frame = self.beat()
                        if frame is None:
                            logger.warning(
                                f"No upstream data after {self.beats} heartbeats, closing"
                            )
                            self.expired = True
                            return
                        yield frame
                        continue

                if item is _EOF:
                    return
                if isinstance(item, BaseException):
                    raise item
                self.stop()
                yield item
        finally:
            pump.cancel()
            await asyncio.wait([pump])

    async def _pump(self, source: AsyncIterable[bytes], queue: asyncio.Queue) -> None:
        try:
            async for chunk in source:
                if chunk:
                    await queue.put(chunk)
        except Exception as e:
            await queue.put(e)
            return
        await queue.put(_EOF)
