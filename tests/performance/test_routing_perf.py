from __future__ import annotations

import time

import pytest

from sessionmux.terminal import BindingTable, DataFrame, NotificationBroadcaster, ViewGeometry


class _CountingView:
    def __init__(self) -> None:
        self.chars = 0

    def write(self, data: str) -> None:
        self.chars += len(data)

    def measure(self) -> ViewGeometry | None:
        return None


@pytest.mark.performance
def test_frame_routing_throughput_stays_within_budget() -> None:
    table = BindingTable(is_live=lambda _session_id: True)
    views = {f"s{index}": _CountingView() for index in range(8)}
    for session_id, view in views.items():
        table.attach_view(session_id, view)

    started = time.perf_counter()
    for index in range(50_000):
        table.route(DataFrame(session_id=f"s{index % 8}", payload="0123456789"))
    elapsed = time.perf_counter() - started

    assert sum(view.chars for view in views.values()) == 500_000
    assert elapsed < 2.0, f"frame routing exceeded budget: {elapsed:.3f}s"


@pytest.mark.performance
def test_buffered_flush_of_large_backlog_stays_within_budget() -> None:
    table = BindingTable(is_live=lambda _session_id: True)
    for _ in range(100_000):
        table.route(DataFrame(session_id="s1", payload="x"))

    view = _CountingView()
    started = time.perf_counter()
    table.attach_view("s1", view)
    elapsed = time.perf_counter() - started

    assert view.chars == 100_000
    assert elapsed < 1.0, f"backlog flush exceeded budget: {elapsed:.3f}s"


@pytest.mark.performance
def test_broadcast_to_many_views_stays_within_budget() -> None:
    table = BindingTable()
    for index in range(64):
        table.attach_view(f"s{index:02d}", _CountingView())
    broadcaster = NotificationBroadcaster(table)

    started = time.perf_counter()
    for _ in range(500):
        broadcaster.broadcast("\r\nprovider switched\r\n")
    elapsed = time.perf_counter() - started

    assert elapsed < 2.0, f"broadcast loop exceeded budget: {elapsed:.3f}s"
