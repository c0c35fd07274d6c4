"""Single multiplexed inbound channel for backend output and exit notices."""

from __future__ import annotations

import asyncio
import logging as py_logging
from collections.abc import Callable

from sessionmux.terminal.models import DataFrame, ProcessExit

logger = py_logging.getLogger(__name__)

FrameHandler = Callable[[DataFrame], None]
ExitHandler = Callable[[ProcessExit], None]
BusItem = DataFrame | ProcessExit


class DataFrameBus:
    """FIFO queue shared by every backend process.

    Backends publish from the event loop thread; `publish_threadsafe` is the
    entry point for reader threads. One pump task drains the queue and hands
    each item to the registered handlers, so per-session order is the publish
    order.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[BusItem] = asyncio.Queue()
        self._pump: asyncio.Task[None] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self.delivered = 0

    @property
    def running(self) -> bool:
        return self._pump is not None and not self._pump.done()

    def publish(self, item: BusItem) -> None:
        self._queue.put_nowait(item)

    def publish_threadsafe(self, item: BusItem) -> None:
        loop = self._loop
        if loop is None:
            raise RuntimeError("DataFrameBus is not started.")
        loop.call_soon_threadsafe(self._queue.put_nowait, item)

    def start(self, on_frame: FrameHandler, on_exit: ExitHandler) -> None:
        if self.running:
            return
        self._loop = asyncio.get_running_loop()
        self._pump = self._loop.create_task(self._run(on_frame, on_exit), name="sessionmux-bus")

    async def drain(self) -> None:
        await self._queue.join()

    async def stop(self) -> None:
        pump = self._pump
        self._pump = None
        if pump is None:
            return
        pump.cancel()
        try:
            await pump
        except asyncio.CancelledError:
            pass

    async def _run(self, on_frame: FrameHandler, on_exit: ExitHandler) -> None:
        while True:
            item = await self._queue.get()
            try:
                if isinstance(item, DataFrame):
                    on_frame(item)
                else:
                    on_exit(item)
                self.delivered += 1
            except Exception:
                logger.exception("bus-dispatch-failed session=%s", item.session_id)
            finally:
                self._queue.task_done()
