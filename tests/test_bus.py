from __future__ import annotations

import asyncio

import pytest

from sessionmux.terminal import DataFrame, DataFrameBus, ProcessExit


@pytest.mark.asyncio
async def test_bus_dispatches_in_publish_order() -> None:
    bus = DataFrameBus()
    seen: list[object] = []
    bus.start(seen.append, seen.append)

    bus.publish(DataFrame(session_id="s1", payload="a"))
    bus.publish(DataFrame(session_id="s2", payload="x"))
    bus.publish(DataFrame(session_id="s1", payload="b"))
    bus.publish(ProcessExit(session_id="s2", exit_code=0))
    await bus.drain()
    await bus.stop()

    assert seen == [
        DataFrame(session_id="s1", payload="a"),
        DataFrame(session_id="s2", payload="x"),
        DataFrame(session_id="s1", payload="b"),
        ProcessExit(session_id="s2", exit_code=0),
    ]
    assert bus.delivered == 4
    assert not bus.running


@pytest.mark.asyncio
async def test_handler_failure_does_not_stop_the_pump() -> None:
    bus = DataFrameBus()
    seen: list[str] = []

    def on_frame(frame: DataFrame) -> None:
        if frame.payload == "boom":
            raise RuntimeError("handler bug")
        seen.append(frame.payload)

    bus.start(on_frame, lambda _notice: None)
    for payload in ("a", "boom", "b"):
        bus.publish(DataFrame(session_id="s1", payload=payload))
    await bus.drain()

    assert seen == ["a", "b"]
    assert bus.running
    await bus.stop()


@pytest.mark.asyncio
async def test_threadsafe_publish_from_worker_thread() -> None:
    bus = DataFrameBus()
    seen: list[DataFrame] = []
    bus.start(seen.append, lambda _notice: None)

    await asyncio.to_thread(bus.publish_threadsafe, DataFrame(session_id="s1", payload="from-thread"))
    await asyncio.sleep(0)
    await bus.drain()
    await bus.stop()

    assert seen == [DataFrame(session_id="s1", payload="from-thread")]


def test_threadsafe_publish_requires_started_bus() -> None:
    with pytest.raises(RuntimeError):
        DataFrameBus().publish_threadsafe(DataFrame(session_id="s1", payload="x"))
