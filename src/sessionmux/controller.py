"""Session-multiplexed terminal controller wiring."""

from __future__ import annotations

import asyncio
import logging as py_logging
from collections.abc import Callable
from dataclasses import dataclass

from sessionmux.config import AppConfig
from sessionmux.errors import ErrorCode, SessionMuxError
from sessionmux.providers.context import ProviderAccountContext
from sessionmux.providers.models import RefreshResult, SwitchResult
from sessionmux.providers.store import AccountStore
from sessionmux.terminal.bindings import BindingTable
from sessionmux.terminal.broadcast import NotificationBroadcaster, NoticeListener
from sessionmux.terminal.bus import DataFrameBus
from sessionmux.terminal.models import (
    DataFrame,
    ProcessExit,
    Session,
    SessionEvent,
    SessionState,
    TerminalBinding,
    TerminalView,
)
from sessionmux.terminal.pty_backend import PtyBackend
from sessionmux.terminal.registry import ProcessBackend, ProjectResolver, SessionListener, SessionRegistry
from sessionmux.terminal.resize import ResizeCoordinator

logger = py_logging.getLogger(__name__)

INTERRUPT_SEQUENCE = "\x03"


@dataclass(frozen=True)
class ControllerStatus:
    active_session_id: str | None
    project_id: str
    provider_name: str
    endpoint: str
    session_count: int
    stale_selection: bool


StatusListener = Callable[[ControllerStatus], None]


class TerminalController:
    """Front door for UI collaborators.

    Everything runs on one event loop: backend output arrives through the
    bus pump, lifecycle changes fan out from the registry, and provider
    switches go through the serialized context.
    """

    def __init__(
        self,
        backend: ProcessBackend,
        store: AccountStore,
        *,
        bus: DataFrameBus | None = None,
        config: AppConfig | None = None,
        project_resolver: ProjectResolver | None = None,
    ) -> None:
        self.config = config or AppConfig()
        self.bus = bus or DataFrameBus()
        self._backend = backend
        self.bindings = BindingTable(is_live=lambda session_id: self.registry.is_live(session_id))
        self.broadcaster = NotificationBroadcaster(self.bindings)
        self.context = ProviderAccountContext(store, self.broadcaster)
        self.registry = SessionRegistry(
            backend,
            max_sessions=self.config.max_sessions,
            project_resolver=project_resolver,
            launch_env=self.context.launch_environment,
        )
        self.resize = ResizeCoordinator(
            self.bindings,
            lambda: self.registry.active_session_id,
            backend.resize,
            debounce_seconds=self.config.resize_debounce_seconds,
        )
        self.registry.subscribe(self.bindings.handle_session_event)
        self.registry.subscribe(self.resize.handle_session_event)
        self.bindings.on_attach(self.resize.handle_view_attached)
        self._status_listeners: list[StatusListener] = []
        self._poller: asyncio.Task[None] | None = None

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        store: AccountStore,
        *,
        project_resolver: ProjectResolver | None = None,
    ) -> TerminalController:
        """Build a controller over real PTY processes launched with the configured command."""
        bus = DataFrameBus()
        backend = PtyBackend(
            bus,
            command=config.launch_command,
            initial_size=(config.default_cols, config.default_rows),
        )
        return cls(backend, store, bus=bus, config=config, project_resolver=project_resolver)

    async def start(self, *, poll: bool = True) -> None:
        await self.context.load()
        self.bus.start(self.route, self.registry.handle_process_exit)
        if poll and self._poller is None:
            self._poller = asyncio.get_running_loop().create_task(
                self._poll_forever(), name="sessionmux-status-poll"
            )
        logger.info("controller-started poll=%s", poll)

    async def shutdown(self) -> None:
        poller = self._poller
        self._poller = None
        if poller is not None:
            poller.cancel()
            try:
                await poller
            except asyncio.CancelledError:
                pass
        self.resize.flush_now()
        await self.bus.stop()
        stop_all = getattr(self._backend, "stop_all", None)
        if callable(stop_all):
            stop_all()
        self.context.close()
        logger.info("controller-stopped")

    async def create_session(
        self,
        project_id: str,
        name: str | None = None,
        *,
        is_temporary: bool = False,
        activate: bool = True,
    ) -> Session:
        session = await self.registry.create(project_id, name, is_temporary=is_temporary)
        if activate and session.is_live:
            self.registry.activate(session.id)
        return session

    def activate(self, session_id: str) -> Session:
        return self.registry.activate(session_id)

    def delete(self, session_id: str) -> Session:
        return self.registry.delete(session_id)

    def list_sessions(self, project_id: str | None = None) -> list[Session]:
        return self.registry.list_sessions(project_id)

    def attach_view(self, session_id: str, view: TerminalView) -> TerminalBinding:
        return self.bindings.attach_view(session_id, view)

    def detach_view(self, session_id: str) -> None:
        self.bindings.detach_view(session_id)

    def route(self, frame: DataFrame) -> None:
        self.bindings.route(frame)

    def handle_process_exit(self, notice: ProcessExit) -> None:
        self.registry.handle_process_exit(notice)

    def send_input(self, session_id: str, data: str) -> None:
        if not self.registry.is_live(session_id):
            raise SessionMuxError(
                f"Session not found: {session_id}",
                code=ErrorCode.NOT_FOUND,
                hint="Select an existing session.",
                session_id=session_id,
            )
        self._backend.send_input(session_id, data)

    def interrupt(self, session_id: str) -> None:
        # Ctrl+C passthrough for interactive shells.
        self.send_input(session_id, INTERRUPT_SEQUENCE)

    def notify_layout_change(self) -> None:
        self.resize.notify_layout_change()

    async def switch_provider(self, provider_id: str) -> SwitchResult:
        return await self.context.switch_provider(provider_id)

    async def switch_account(self, provider_id: str, account_id: str) -> SwitchResult:
        return await self.context.switch_account(provider_id, account_id)

    async def refresh_accounts(self) -> RefreshResult:
        return await self.context.refresh_accounts()

    def subscribe_events(self, listener: SessionListener) -> Callable[[], None]:
        return self.registry.subscribe(listener)

    def subscribe_notifications(self, listener: NoticeListener) -> Callable[[], None]:
        return self.broadcaster.subscribe(listener)

    def subscribe_status(self, listener: StatusListener) -> Callable[[], None]:
        self._status_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._status_listeners:
                self._status_listeners.remove(listener)

        return unsubscribe

    def list_events(self) -> list[SessionEvent]:
        return self.registry.list_events()

    async def poll_status(self) -> ControllerStatus:
        for session in self.registry.list_sessions():
            if session.state == SessionState.LOADING:
                continue
            try:
                alive = self._backend.is_alive(session.id)
            except Exception:
                logger.debug("status-check-failed session=%s", session.id, exc_info=True)
                continue
            if not alive:
                logger.warning("status-poll found dead process session=%s", session.id)
                self.registry.handle_process_exit(ProcessExit(session_id=session.id))
        self.resize.retry_if_pending()

        status = self.status()
        for listener in list(self._status_listeners):
            try:
                listener(status)
            except Exception:
                logger.exception("status listener failed")
        return status

    def status(self) -> ControllerStatus:
        active_id = self.registry.active_session_id
        active = self.registry.get(active_id) if active_id else None
        provider = self.context.active_provider()
        return ControllerStatus(
            active_session_id=active_id,
            project_id=active.project_id if active is not None else "",
            provider_name=provider.name if provider is not None else "None",
            endpoint=provider.endpoint_for(self.context.active_account()) if provider is not None else "",
            session_count=len(self.registry.list_sessions()),
            stale_selection=self.context.stale_selection,
        )

    async def _poll_forever(self) -> None:
        while True:
            await asyncio.sleep(self.config.status_poll_interval_seconds)
            try:
                await self.poll_status()
            except Exception:
                logger.exception("status poll failed")
