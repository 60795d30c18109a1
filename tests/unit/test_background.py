import asyncio

import pytest

from marketsync.utils.background import BackgroundWriter


class GatedSink:
    def __init__(self):
        self.state = 0
        self.written: list[int] = []
        self.gate = asyncio.Event()

    async def flush(self):
        snapshot = self.state
        await self.gate.wait()
        self.written.append(snapshot)


def test_schedule_without_loop_is_a_noop():
    writer = BackgroundWriter("test")
    assert writer.schedule(lambda: None) is False
    assert writer.pending == 0


@pytest.mark.asyncio
async def test_writes_during_flight_coalesce_into_one_follow_up():
    writer = BackgroundWriter("test")
    sink = GatedSink()

    sink.state = 1
    writer.schedule(sink.flush)
    await asyncio.sleep(0)

    for state in (2, 3, 4):
        sink.state = state
        assert writer.schedule(sink.flush) is True
    assert writer.pending == 1

    sink.gate.set()
    await writer.drain()

    assert sink.written == [1, 4]
    assert writer.pending == 0


@pytest.mark.asyncio
async def test_failed_write_does_not_stop_follow_up():
    writer = BackgroundWriter("test")
    calls = []

    async def flaky():
        calls.append(len(calls))
        if len(calls) == 1:
            writer.schedule(flaky)
            raise ConnectionError("store down")

    writer.schedule(flaky)
    await writer.drain()

    assert calls == [0, 1]
