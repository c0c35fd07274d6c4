"""Fit-to-container geometry for the active terminal view."""

from __future__ import annotations

import asyncio
import logging as py_logging
import math
from collections.abc import Callable

from sessionmux.terminal.bindings import BindingTable
from sessionmux.terminal.models import SessionEvent, SessionEventKind, ViewGeometry

logger = py_logging.getLogger(__name__)

MIN_COLS = 2
MIN_ROWS = 1

ResizeSink = Callable[[str, int, int], None]
ActiveSessionLookup = Callable[[], str | None]


def compute_fit(geometry: ViewGeometry | None) -> tuple[int, int] | None:
    """Return the (cols, rows) grid that fits the container, or None if it cannot be measured."""
    if geometry is None:
        return None
    if geometry.cell_width <= 0 or geometry.cell_height <= 0:
        return None
    usable_width = geometry.width - geometry.padding_x
    usable_height = geometry.height - geometry.padding_y
    if usable_width <= 0 or usable_height <= 0:
        return None
    cols = max(MIN_COLS, math.floor(usable_width / geometry.cell_width))
    rows = max(MIN_ROWS, math.floor(usable_height / geometry.cell_height))
    return cols, rows


class ResizeCoordinator:
    def __init__(
        self,
        bindings: BindingTable,
        active_session: ActiveSessionLookup,
        resize: ResizeSink,
        *,
        debounce_seconds: float = 0.05,
    ) -> None:
        self._bindings = bindings
        self._active_session = active_session
        self._resize = resize
        self.debounce_seconds = max(0.0, debounce_seconds)
        self._timer: asyncio.TimerHandle | None = None
        self._last_sent: dict[str, tuple[int, int]] = {}
        self.retry_pending = False
        self.sent: list[tuple[str, int, int]] = []

    @property
    def scheduled(self) -> bool:
        return self._timer is not None

    def last_size(self, session_id: str) -> tuple[int, int] | None:
        return self._last_sent.get(session_id)

    def notify_layout_change(self) -> None:
        self._schedule()

    def handle_session_event(self, event: SessionEvent) -> None:
        if event.kind == SessionEventKind.ACTIVATED:
            self._schedule()
        elif event.kind == SessionEventKind.DESTROYED:
            self._last_sent.pop(event.session_id, None)

    def handle_view_attached(self, session_id: str) -> None:
        if session_id == self._active_session():
            self._schedule()

    def retry_if_pending(self) -> bool:
        """Replay a resize that was deferred earlier; True when one is now scheduled."""
        if not self.retry_pending or self._timer is not None:
            return False
        self._schedule()
        return self._timer is not None

    def cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def flush_now(self) -> tuple[int, int] | None:
        self.cancel()
        return self._apply()

    def _schedule(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop to debounce on; the next layout pass inside the loop picks it up.
            self.retry_pending = True
            return
        self._timer = loop.call_later(self.debounce_seconds, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        self._apply()

    def _apply(self) -> tuple[int, int] | None:
        self.retry_pending = False
        session_id = self._active_session()
        if session_id is None:
            return None
        binding = self._bindings.get(session_id)
        if binding is None or binding.view is None:
            return None

        try:
            fit = compute_fit(binding.view.measure())
        except Exception:
            logger.debug("resize-measure-failed session=%s", session_id, exc_info=True)
            fit = None
        if fit is None:
            self.retry_pending = True
            logger.debug("resize-deferred session=%s reason=no-geometry", session_id)
            return None

        if self._last_sent.get(session_id) == fit:
            return fit
        cols, rows = fit
        try:
            self._resize(session_id, cols, rows)
        except Exception:
            logger.warning("backend resize failed session=%s size=%sx%s", session_id, cols, rows, exc_info=True)
            return None
        self._last_sent[session_id] = fit
        self.sent.append((session_id, cols, rows))
        logger.debug("resize-sent session=%s cols=%s rows=%s", session_id, cols, rows)
        return fit
