"""Session-multiplexed terminal domain package."""

from .bindings import BindingTable
from .broadcast import BroadcastReport, NotificationBroadcaster, format_switch_notice
from .bus import DataFrameBus
from .models import (
    DataFrame,
    ProcessExit,
    Session,
    SessionEvent,
    SessionEventKind,
    SessionState,
    TerminalBinding,
    TerminalView,
    ViewGeometry,
)
from .pty_backend import PtyBackend, PtyHandle
from .registry import ProcessBackend, SessionRegistry
from .resize import ResizeCoordinator, compute_fit

__all__ = [
    "BindingTable",
    "BroadcastReport",
    "compute_fit",
    "DataFrame",
    "DataFrameBus",
    "format_switch_notice",
    "NotificationBroadcaster",
    "ProcessBackend",
    "ProcessExit",
    "PtyBackend",
    "PtyHandle",
    "ResizeCoordinator",
    "Session",
    "SessionEvent",
    "SessionEventKind",
    "SessionRegistry",
    "SessionState",
    "TerminalBinding",
    "TerminalView",
    "ViewGeometry",
]
