"""Unit tests for RevealScheduler pacing."""

import asyncio

import pytest

from trickle.errors import EmptyResponse
from trickle.reveal import RevealScheduler


class Sink:
    def __init__(self):
        self.updates = []
        self.finished = []
        self.errors = []

    def scheduler(self, **kwargs):
        return RevealScheduler(
            on_update=lambda text, piece: self.updates.append((text, piece)),
            on_finish=self.finished.append,
            on_error=self.errors.append,
            **kwargs,
        )


@pytest.fixture
def sink():
    return Sink()


class TestPush:
    def test_revealed_plus_pending_matches_pushed(self, sink):
        sched = sink.scheduler()
        pushed = ""
        for piece in ["a", "bcd", "", "efghij" * 40, "k"]:
            sched.push(piece)
            pushed += piece
            assert sched.revealed + sched.pending == pushed
            sched.step()
            assert sched.revealed + sched.pending == pushed

    def test_push_does_not_notify(self, sink):
        sched = sink.scheduler()
        sched.push("hello")
        assert sink.updates == []
        assert sched.pending == "hello"

    def test_push_after_finish_ignored(self, sink):
        sched = sink.scheduler()
        sched.push("a")
        sched.finish()
        sched.push("b")
        assert sched.text == "a"


class TestStep:
    def test_single_char_slices_for_short_backlog(self, sink):
        sched = sink.scheduler()
        sched.push("abc")
        assert [sched.step() for _ in range(4)] == ["a", "b", "c", ""]
        assert sink.updates == [("a", "a"), ("ab", "b"), ("abc", "c")]

    def test_slice_scales_with_backlog(self, sink):
        sched = sink.scheduler()
        sched.push("x" * 600)
        assert len(sched.step()) == 10

    def test_slice_rounds_half_up(self, sink):
        sched = sink.scheduler()
        sched.push("x" * 90)
        assert len(sched.step()) == 2

    def test_step_on_empty_is_silent(self, sink):
        sched = sink.scheduler()
        assert sched.step() == ""
        assert sink.updates == []


class TestFinish:
    def test_flushes_pending_then_finishes(self, sink):
        sched = sink.scheduler()
        sched.push("Hello world")
        sched.step()
        sched.finish()

        assert sink.updates[-1] == ("Hello world", "ello world")
        assert sink.finished == ["Hello world"]
        assert sched.pending == ""

    def test_empty_reports_empty_response(self, sink):
        sched = sink.scheduler()
        sched.finish()

        assert sink.finished == []
        assert len(sink.errors) == 1
        assert isinstance(sink.errors[0], EmptyResponse)

    def test_allow_empty_finishes_normally(self, sink):
        sched = sink.scheduler()
        sched.finish(allow_empty=True)
        assert sink.finished == [""]

    def test_terminal_callback_fires_once(self, sink):
        sched = sink.scheduler()
        sched.push("x")
        assert sched.finish() is True
        assert sched.finish() is False
        assert sched.fail(EmptyResponse()) is False
        assert sched.cancel() is False
        assert sink.finished == ["x"]
        assert sink.errors == []


class TestCancel:
    def test_folds_pending_without_update(self, sink):
        sched = sink.scheduler()
        sched.push("partial answer")
        sched.step()
        updates_before = len(sink.updates)
        sched.cancel()

        assert len(sink.updates) == updates_before
        assert sink.finished == ["partial answer"]

    def test_cancel_with_nothing_still_finishes(self, sink):
        sched = sink.scheduler()
        sched.cancel()
        assert sink.finished == [""]
        assert sink.errors == []


class TestRun:
    @pytest.mark.asyncio
    async def test_run_paces_on_injected_timer(self, sink):
        ticks = []

        async def fake_sleep(interval):
            ticks.append(interval)
            if len(ticks) == 3:
                sched.finish()
            await asyncio.sleep(0)

        sched = sink.scheduler(interval=0.5, sleep=fake_sleep)
        sched.push("abcdef")
        await sched.run()

        assert ticks == [0.5, 0.5, 0.5]
        assert [piece for _, piece in sink.updates] == ["a", "b", "c", "def"]
        assert sink.finished == ["abcdef"]

    @pytest.mark.asyncio
    async def test_run_reveals_burst_gradually(self, sink):
        sched = sink.scheduler(interval=0.001)
        task = asyncio.create_task(sched.run())
        sched.push("y" * 120)
        await asyncio.sleep(0.05)
        sched.finish()
        await task

        assert len(sink.updates) > 1
        assert sink.finished == ["y" * 120]
