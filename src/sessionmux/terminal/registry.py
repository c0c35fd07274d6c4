"""Authoritative session lifecycle registry."""

from __future__ import annotations

import asyncio
import logging as py_logging
import uuid
from collections.abc import Awaitable, Callable
from typing import Protocol

from sessionmux.errors import ErrorCode, SessionMuxError
from sessionmux.terminal.models import (
    ACTIVATABLE_STATES,
    ProcessExit,
    Session,
    SessionEvent,
    SessionEventKind,
    SessionState,
    utc_now,
)

logger = py_logging.getLogger(__name__)

SessionListener = Callable[[SessionEvent], None]
ProjectResolver = Callable[[str], str]
EnvironmentProvider = Callable[[], dict[str, str]]


class ProcessBackend(Protocol):
    def spawn_process(self, session_id: str, cwd: str, env: dict[str, str]) -> Awaitable[object]: ...

    def send_input(self, session_id: str, data: str) -> None: ...

    def resize(self, session_id: str, cols: int, rows: int) -> None: ...

    def terminate(self, session_id: str) -> None: ...

    def is_alive(self, session_id: str) -> bool: ...


def _project_as_directory(project_id: str) -> str:
    return project_id


class SessionRegistry:
    def __init__(
        self,
        backend: ProcessBackend,
        *,
        max_sessions: int = 16,
        project_resolver: ProjectResolver | None = None,
        launch_env: EnvironmentProvider | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        if max_sessions < 1:
            raise SessionMuxError(
                f"Invalid max session count: {max_sessions}",
                code=ErrorCode.VALIDATION_ERROR,
                hint="Use a positive session limit.",
            )
        self.max_sessions = max_sessions
        self._backend = backend
        self._project_resolver = project_resolver or _project_as_directory
        self._launch_env = launch_env or dict
        self._id_factory = id_factory or (lambda: uuid.uuid4().hex)
        self._sessions: dict[str, Session] = {}
        self._spawns: dict[str, asyncio.Task[object]] = {}
        self._usage: dict[str, int] = {}
        self._usage_clock = 0
        self._active_id: str | None = None
        self._listeners: list[SessionListener] = []
        self._events: list[SessionEvent] = []

    @property
    def active_session_id(self) -> str | None:
        return self._active_id

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def is_live(self, session_id: str) -> bool:
        session = self._sessions.get(session_id)
        return session is not None and session.is_live

    def list_sessions(self, project_id: str | None = None) -> list[Session]:
        return [
            session
            for session in self._sessions.values()
            if session.is_live and (project_id is None or session.project_id == project_id)
        ]

    def list_events(self) -> list[SessionEvent]:
        return list(self._events)

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def create(
        self,
        project_id: str,
        name: str | None = None,
        *,
        is_temporary: bool = False,
    ) -> Session:
        if not project_id.strip():
            raise SessionMuxError(
                "Project id is required.",
                code=ErrorCode.VALIDATION_ERROR,
                hint="Select a project before creating a session.",
            )
        if len(self.list_sessions()) >= self.max_sessions:
            raise SessionMuxError(
                f"Session limit reached: {self.max_sessions}",
                code=ErrorCode.VALIDATION_ERROR,
                hint="Close another session before creating a new one.",
            )

        session_id = self._id_factory()
        if session_id in self._sessions:
            raise SessionMuxError(
                f"Session already exists: {session_id}",
                code=ErrorCode.VALIDATION_ERROR,
                hint="Use a unique session id.",
                session_id=session_id,
            )
        cwd = self._project_resolver(project_id.strip())
        session = Session(
            id=session_id,
            project_id=project_id.strip(),
            name=(name or "").strip() or "New Session",
            cwd=cwd,
            is_temporary=is_temporary,
        )
        self._sessions[session_id] = session
        self._record(session_id, SessionEventKind.CREATED, f"Created session '{session.name}'.")

        spawn = asyncio.ensure_future(self._backend.spawn_process(session_id, cwd, self._launch_env()))
        self._spawns[session_id] = spawn
        try:
            # wait() does not re-raise the spawn's cancellation into this task.
            await asyncio.wait({spawn})
        except asyncio.CancelledError:
            spawn.cancel()
            if session.is_live:
                self._destroy(session, error=ErrorCode.SPAWN_FAILED, message="Session creation cancelled.")
                self._terminate_backend(session_id)
            raise
        finally:
            self._spawns.pop(session_id, None)

        failure = spawn.exception() if not spawn.cancelled() else None
        if session.state == SessionState.DESTROYED:
            logger.info("spawn-ack-ignored session=%s reason=deleted", session_id)
            return session

        if spawn.cancelled() or failure is not None:
            reason = str(failure) if failure is not None else "Spawn was cancelled."
            self._destroy(session, error=ErrorCode.SPAWN_FAILED, message=reason)
            if isinstance(failure, SessionMuxError) and failure.code == ErrorCode.SPAWN_FAILED:
                failure.session_id = failure.session_id or session_id
                raise failure
            raise SessionMuxError(
                f"Failed to start session process: {session_id}",
                code=ErrorCode.SPAWN_FAILED,
                hint=reason or "Check the launch command and project directory.",
                session_id=session_id,
            ) from failure

        session.state = SessionState.READY
        self._touch(session_id)
        self._record(session_id, SessionEventKind.READY, "Session process is running.")
        return session

    def activate(self, session_id: str) -> Session:
        session = self._must_get_live(session_id)
        if session.state not in ACTIVATABLE_STATES:
            raise SessionMuxError(
                f"Session is still starting: {session_id}",
                code=ErrorCode.NOT_READY,
                hint="Wait for the session process to start.",
                session_id=session_id,
            )
        if self._active_id == session_id:
            return session

        previous = self._sessions.get(self._active_id) if self._active_id else None
        if previous is not None and previous.state == SessionState.ACTIVE:
            previous.state = SessionState.INACTIVE
            self._record(previous.id, SessionEventKind.DEACTIVATED, "Session moved to background.")

        session.state = SessionState.ACTIVE
        session.last_active_at = utc_now()
        self._active_id = session_id
        self._touch(session_id)
        self._record(session_id, SessionEventKind.ACTIVATED, "Session activated.")
        return session

    def delete(self, session_id: str) -> Session:
        session = self._must_get_live(session_id)
        spawn = self._spawns.pop(session_id, None)
        if spawn is not None and not spawn.done():
            spawn.cancel()
            logger.debug("spawn-cancelled session=%s", session_id)

        was_active = self._active_id == session_id
        self._destroy(session, message="Session deleted.")
        self._terminate_backend(session_id)
        if was_active:
            self._fallback_activation()
        return session

    def handle_process_exit(self, notice: ProcessExit) -> None:
        session = self._sessions.get(notice.session_id)
        if session is None or not session.is_live:
            logger.debug("process-exit-ignored session=%s", notice.session_id)
            return
        spawn = self._spawns.pop(notice.session_id, None)
        if spawn is not None and not spawn.done():
            spawn.cancel()
        was_active = self._active_id == notice.session_id
        self._destroy(
            session,
            error=ErrorCode.PROCESS_EXITED,
            message=f"Process exited with code {notice.exit_code}.",
        )
        if was_active:
            self._fallback_activation()

    def _fallback_activation(self) -> None:
        candidates = [
            session
            for session in self._sessions.values()
            if session.state in (SessionState.READY, SessionState.INACTIVE)
        ]
        if not candidates:
            logger.info("no session left to activate")
            return
        target = max(candidates, key=lambda item: self._usage.get(item.id, 0))
        self.activate(target.id)

    def _destroy(self, session: Session, *, message: str, error: ErrorCode | None = None) -> None:
        session.state = SessionState.DESTROYED
        session.failure = error
        self._usage.pop(session.id, None)
        if self._active_id == session.id:
            self._active_id = None
        self._record(session.id, SessionEventKind.DESTROYED, message, error=error)

    def _terminate_backend(self, session_id: str) -> None:
        try:
            self._backend.terminate(session_id)
        except Exception:
            logger.warning("backend terminate failed session=%s", session_id, exc_info=True)

    def _touch(self, session_id: str) -> None:
        self._usage_clock += 1
        self._usage[session_id] = self._usage_clock

    def _must_get_live(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None or not session.is_live:
            raise SessionMuxError(
                f"Session not found: {session_id}",
                code=ErrorCode.NOT_FOUND,
                hint="Select an existing session.",
                session_id=session_id,
            )
        return session

    def _record(
        self,
        session_id: str,
        kind: SessionEventKind,
        message: str,
        *,
        error: ErrorCode | None = None,
    ) -> None:
        event = SessionEvent(session_id=session_id, kind=kind, message=message, error=error)
        self._events.append(event)
        logger.info("session-event session=%s kind=%s message=%s", session_id, kind.value, message)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("session listener failed session=%s kind=%s", session_id, kind.value)
