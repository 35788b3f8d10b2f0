"""Unit tests for HeartbeatInjector."""

import asyncio

import pytest

from trickle.heartbeat import HeartbeatInjector

BEAT = b"data: beat\n\n"


async def slow_source(delay, chunks, pause_after=None, pause=0.0):
    await asyncio.sleep(delay)
    for i, c in enumerate(chunks):
        if pause_after is not None and i == pause_after:
            await asyncio.sleep(pause)
        yield c


class TestBeat:
    def test_beat_counts_until_bound(self):
        hb = HeartbeatInjector(BEAT, interval=1, max_beats=2)
        assert [hb.beat(), hb.beat(), hb.beat()] == [BEAT, BEAT, None]
        assert hb.beats == 2

    def test_stop_is_permanent(self):
        hb = HeartbeatInjector(BEAT, interval=1, max_beats=10)
        hb.stop()
        assert hb.beat() is None
        assert hb.active is False


class TestWrap:
    @pytest.mark.asyncio
    async def test_first_frame_is_immediate_heartbeat(self):
        hb = HeartbeatInjector(BEAT, interval=10, max_beats=3)
        stream = hb.wrap(slow_source(0.0, [b"real"]))
        first = await asyncio.wait_for(stream.__anext__(), 0.5)
        assert first == BEAT
        await stream.aclose()

    @pytest.mark.asyncio
    async def test_heartbeats_until_first_real_byte(self):
        hb = HeartbeatInjector(BEAT, interval=0.01, max_beats=100)
        out = [c async for c in hb.wrap(slow_source(0.08, [b"one", b"two"]))]

        assert out[0] == BEAT
        assert out[-2:] == [b"one", b"two"]
        assert all(c == BEAT for c in out[:-2])
        assert len(out) > 3

    @pytest.mark.asyncio
    async def test_no_heartbeats_after_real_data_even_during_pause(self):
        hb = HeartbeatInjector(BEAT, interval=0.01, max_beats=100)
        source = slow_source(0.0, [b"one", b"two"], pause_after=1, pause=0.1)
        out = [c async for c in hb.wrap(source)]

        first_real = out.index(b"one")
        assert BEAT not in out[first_real:]
        assert out[first_real:] == [b"one", b"two"]

    @pytest.mark.asyncio
    async def test_empty_chunks_do_not_stop_heartbeats(self):
        hb = HeartbeatInjector(BEAT, interval=0.01, max_beats=100)

        async def source():
            yield b""
            await asyncio.sleep(0.05)
            yield b"real"

        out = [c async for c in hb.wrap(source())]
        assert out.count(BEAT) > 1
        assert b"" not in out

    @pytest.mark.asyncio
    async def test_silent_source_closes_after_bound(self):
        hb = HeartbeatInjector(BEAT, interval=0.01, max_beats=3)

        async def never():
            await asyncio.Event().wait()
            yield b"unreachable"

        out = await asyncio.wait_for(_collect(hb.wrap(never())), 1.0)
        assert out == [BEAT, BEAT, BEAT]
        assert hb.expired is True

    @pytest.mark.asyncio
    async def test_empty_source_closes_without_expiry(self):
        hb = HeartbeatInjector(BEAT, interval=1, max_beats=3)

        async def empty():
            return
            yield

        out = await asyncio.wait_for(_collect(hb.wrap(empty())), 1.0)
        assert out == [BEAT]
        assert hb.expired is False

    @pytest.mark.asyncio
    async def test_source_error_propagates(self):
        hb = HeartbeatInjector(BEAT, interval=1, max_beats=3)

        async def broken():
            yield b"data"
            raise RuntimeError("socket reset")

        with pytest.raises(RuntimeError, match="socket reset"):
            await _collect(hb.wrap(broken()))

    @pytest.mark.asyncio
    async def test_closing_wrapper_cancels_source(self):
        hb = HeartbeatInjector(BEAT, interval=0.01, max_beats=100)
        cancelled = asyncio.Event()

        async def source():
            try:
                await asyncio.Event().wait()
                yield b"never"
            except asyncio.CancelledError:
                cancelled.set()
                raise

        stream = hb.wrap(source())
        assert await stream.__anext__() == BEAT
        await asyncio.sleep(0.005)
        await stream.aclose()

        assert cancelled.is_set()

    @pytest.mark.asyncio
    async def test_source_is_read_at_the_consumer_pace(self):
        hb = HeartbeatInjector(BEAT, interval=1, max_beats=3)
        pulled = 0

        async def fast_source():
            nonlocal pulled
            for _ in range(1000):
                pulled += 1
                yield b"x"

        stream = hb.wrap(fast_source())
        assert await stream.__anext__() == BEAT
        assert await stream.__anext__() == b"x"
        await asyncio.sleep(0.05)

        assert pulled <= 3
        await stream.aclose()

    @pytest.mark.asyncio
    async def test_bounded_read_ahead_still_delivers_everything(self):
        hb = HeartbeatInjector(BEAT, interval=1, max_beats=3, backlog=2)
        chunks = [bytes([65 + i]) for i in range(20)]

        out = await _collect(hb.wrap(slow_source(0, chunks)))

        assert out == [BEAT] + chunks


async def _collect(stream):
    return [c async for c in stream]
