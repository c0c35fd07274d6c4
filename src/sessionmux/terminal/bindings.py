"""Session-to-view binding table with per-session pending buffers."""

from __future__ import annotations

import logging as py_logging
from collections.abc import Callable

from sessionmux.errors import ErrorCode, SessionMuxError
from sessionmux.terminal.models import (
    DataFrame,
    SessionEvent,
    SessionEventKind,
    TerminalBinding,
    TerminalView,
)

logger = py_logging.getLogger(__name__)

LivenessCheck = Callable[[str], bool]
AttachListener = Callable[[str], None]


class BindingTable:
    """Maps sessions to their terminal views.

    Frames for a session without a view are buffered in arrival order and
    flushed to the next view that attaches. A binding lives from the moment
    its session becomes ready (or earlier, when a frame or a view for it shows
    up first) until the session is destroyed.
    """

    def __init__(self, *, is_live: LivenessCheck | None = None) -> None:
        self._is_live = is_live
        self._bindings: dict[str, TerminalBinding] = {}
        self._attach_listeners: list[AttachListener] = []

    def get(self, session_id: str) -> TerminalBinding | None:
        return self._bindings.get(session_id)

    def live_bindings(self) -> list[TerminalBinding]:
        return [binding for binding in self._bindings.values() if binding.view is not None]

    def list_bindings(self) -> list[TerminalBinding]:
        return [self._bindings[key] for key in sorted(self._bindings)]

    def on_attach(self, listener: AttachListener) -> None:
        self._attach_listeners.append(listener)

    def ensure_binding(self, session_id: str) -> TerminalBinding:
        binding = self._bindings.get(session_id)
        if binding is None:
            binding = TerminalBinding(session_id=session_id)
            self._bindings[session_id] = binding
            logger.debug("binding-created session=%s", session_id)
        return binding

    def release(self, session_id: str) -> None:
        binding = self._bindings.pop(session_id, None)
        if binding is None:
            return
        if binding.pending:
            logger.info(
                "binding-released session=%s discarded_chunks=%s discarded_chars=%s",
                session_id,
                len(binding.pending),
                binding.pending_chars,
            )
        binding.view = None
        binding.clear_pending()

    def handle_session_event(self, event: SessionEvent) -> None:
        if event.kind == SessionEventKind.READY:
            self.ensure_binding(event.session_id)
        elif event.kind == SessionEventKind.DESTROYED:
            self.release(event.session_id)

    def attach_view(self, session_id: str, view: TerminalView) -> TerminalBinding:
        binding = self._bindings.get(session_id)
        if binding is None:
            self._require_live(session_id)
            binding = self.ensure_binding(session_id)
        if binding.view is not None:
            raise SessionMuxError(
                f"Session already has a terminal view: {session_id}",
                code=ErrorCode.ALREADY_BOUND,
                hint="Detach the current view before attaching a new one.",
                session_id=session_id,
            )

        if binding.pending:
            # A failed flush leaves the buffer intact for the next attach.
            view.write(binding.pending_text())
            logger.debug(
                "binding-flushed session=%s chunks=%s chars=%s",
                session_id,
                len(binding.pending),
                binding.pending_chars,
            )
            binding.clear_pending()
        binding.view = view
        logger.debug("view-attached session=%s", session_id)

        for listener in list(self._attach_listeners):
            try:
                listener(session_id)
            except Exception:
                logger.exception("attach listener failed session=%s", session_id)
        return binding

    def detach_view(self, session_id: str) -> None:
        binding = self._bindings.get(session_id)
        if binding is None:
            raise SessionMuxError(
                f"No terminal binding for session: {session_id}",
                code=ErrorCode.NOT_FOUND,
                hint="Attach a view to a live session first.",
                session_id=session_id,
            )
        binding.view = None
        logger.debug("view-detached session=%s", session_id)

    def route(self, frame: DataFrame) -> None:
        binding = self._bindings.get(frame.session_id)
        if binding is None:
            if self._is_live is not None and not self._is_live(frame.session_id):
                logger.warning(
                    "frame-dropped session=%s chars=%s reason=session-not-live",
                    frame.session_id,
                    len(frame.payload),
                )
                return
            binding = self.ensure_binding(frame.session_id)

        view = binding.view
        if view is None:
            binding.buffer(frame.payload)
            return
        try:
            view.write(frame.payload)
        except Exception:
            logger.warning(
                "view-write-failed session=%s; detaching view and buffering",
                frame.session_id,
                exc_info=True,
            )
            binding.view = None
            binding.buffer(frame.payload)

    def deliver_system_message(self, session_id: str, text: str) -> bool:
        binding = self._bindings.get(session_id)
        if binding is None or binding.view is None:
            return False
        binding.view.write(text)
        return True

    def _require_live(self, session_id: str) -> None:
        if self._is_live is not None and not self._is_live(session_id):
            raise SessionMuxError(
                f"Session not found: {session_id}",
                code=ErrorCode.NOT_FOUND,
                hint="Select an existing session.",
                session_id=session_id,
            )
