from __future__ import annotations

import asyncio

import pytest

from sessionmux.terminal import (
    BindingTable,
    ResizeCoordinator,
    SessionEvent,
    SessionEventKind,
    ViewGeometry,
    compute_fit,
)

_DEBOUNCE = 0.01


class _SizedView:
    def __init__(self, geometry: ViewGeometry | None) -> None:
        self.geometry = geometry

    def write(self, data: str) -> None:
        _ = data

    def measure(self) -> ViewGeometry | None:
        return self.geometry


class _Harness:
    def __init__(self) -> None:
        self.active: str | None = None
        self.calls: list[tuple[str, int, int]] = []
        self.bindings = BindingTable()
        self.coordinator = ResizeCoordinator(
            self.bindings,
            lambda: self.active,
            lambda session_id, cols, rows: self.calls.append((session_id, cols, rows)),
            debounce_seconds=_DEBOUNCE,
        )
        self.bindings.on_attach(self.coordinator.handle_view_attached)

    def activate(self, session_id: str) -> None:
        self.active = session_id
        self.coordinator.handle_session_event(SessionEvent(session_id=session_id, kind=SessionEventKind.ACTIVATED))


async def _settle() -> None:
    await asyncio.sleep(_DEBOUNCE * 5)


def _geometry(width: float = 800, height: float = 480) -> ViewGeometry:
    return ViewGeometry(width=width, height=height, cell_width=10, cell_height=20)


def test_compute_fit_floors_to_whole_cells() -> None:
    geometry = ViewGeometry(width=805, height=490, cell_width=10, cell_height=20, padding_x=4, padding_y=8)

    assert compute_fit(geometry) == (80, 24)


def test_compute_fit_clamps_to_minimum_grid() -> None:
    assert compute_fit(ViewGeometry(width=5, height=5, cell_width=10, cell_height=20)) == (2, 1)


@pytest.mark.parametrize(
    "geometry",
    [
        None,
        ViewGeometry(width=0, height=480, cell_width=10, cell_height=20),
        ViewGeometry(width=800, height=480, cell_width=0, cell_height=20),
        ViewGeometry(width=10, height=10, cell_width=10, cell_height=20, padding_x=10),
    ],
)
def test_compute_fit_rejects_unmeasurable_geometry(geometry: ViewGeometry | None) -> None:
    assert compute_fit(geometry) is None


@pytest.mark.asyncio
async def test_layout_burst_is_debounced_to_one_resize() -> None:
    harness = _Harness()
    harness.bindings.attach_view("s1", _SizedView(_geometry()))
    harness.activate("s1")

    for _ in range(10):
        harness.coordinator.notify_layout_change()
    await _settle()

    assert harness.calls == [("s1", 80, 24)]
    assert harness.coordinator.last_size("s1") == (80, 24)


@pytest.mark.asyncio
async def test_only_active_session_is_resized() -> None:
    harness = _Harness()
    harness.bindings.attach_view("s1", _SizedView(_geometry()))
    harness.bindings.attach_view("s2", _SizedView(_geometry(400, 200)))
    harness.activate("s1")
    await _settle()

    harness.coordinator.handle_view_attached("s2")
    harness.coordinator.notify_layout_change()
    await _settle()

    assert {call[0] for call in harness.calls} == {"s1"}


@pytest.mark.asyncio
async def test_switching_back_without_geometry_change_sends_at_most_once() -> None:
    harness = _Harness()
    harness.bindings.attach_view("s1", _SizedView(_geometry()))
    harness.bindings.attach_view("s2", _SizedView(_geometry()))

    harness.activate("s1")
    await _settle()
    harness.activate("s2")
    await _settle()
    harness.activate("s1")
    await _settle()

    assert harness.calls == [("s1", 80, 24), ("s2", 80, 24)]


@pytest.mark.asyncio
async def test_zero_extent_defers_until_view_has_size() -> None:
    harness = _Harness()
    view = _SizedView(_geometry(width=0))
    harness.bindings.attach_view("s1", view)
    harness.activate("s1")
    await _settle()

    assert harness.calls == []
    assert harness.coordinator.retry_pending is True

    view.geometry = _geometry()
    harness.coordinator.notify_layout_change()
    await _settle()

    assert harness.calls == [("s1", 80, 24)]
    assert harness.coordinator.retry_pending is False


@pytest.mark.asyncio
async def test_backend_resize_error_is_not_fatal() -> None:
    bindings = BindingTable()
    bindings.attach_view("s1", _SizedView(_geometry()))

    def failing_resize(_session_id: str, _cols: int, _rows: int) -> None:
        raise RuntimeError("pty closed")

    coordinator = ResizeCoordinator(bindings, lambda: "s1", failing_resize, debounce_seconds=_DEBOUNCE)

    assert coordinator.flush_now() is None
    assert coordinator.last_size("s1") is None


@pytest.mark.asyncio
async def test_cancel_drops_pending_resize() -> None:
    harness = _Harness()
    harness.bindings.attach_view("s1", _SizedView(_geometry()))
    harness.activate("s1")
    assert harness.coordinator.scheduled

    harness.coordinator.cancel()
    await _settle()

    assert harness.calls == []
    assert not harness.coordinator.scheduled


@pytest.mark.asyncio
async def test_destroyed_session_forgets_last_size() -> None:
    harness = _Harness()
    harness.bindings.attach_view("s1", _SizedView(_geometry()))
    harness.activate("s1")
    harness.coordinator.flush_now()

    harness.coordinator.handle_session_event(SessionEvent(session_id="s1", kind=SessionEventKind.DESTROYED))

    assert harness.coordinator.last_size("s1") is None


def test_layout_change_outside_event_loop_marks_retry() -> None:
    harness = _Harness()

    harness.coordinator.notify_layout_change()

    assert harness.coordinator.retry_pending is True
    assert not harness.coordinator.scheduled


@pytest.mark.asyncio
async def test_layout_change_recorded_off_loop_is_replayed_on_retry() -> None:
    harness = _Harness()
    harness.bindings.attach_view("s1", _SizedView(_geometry()))
    harness.active = "s1"

    await asyncio.to_thread(harness.coordinator.notify_layout_change)
    assert harness.coordinator.retry_pending is True
    assert harness.calls == []

    assert harness.coordinator.retry_if_pending() is True
    await _settle()

    assert harness.calls == [("s1", 80, 24)]
    assert harness.coordinator.retry_pending is False
    assert harness.coordinator.retry_if_pending() is False

