"""Session and terminal binding domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Protocol

from sessionmux.errors import ErrorCode


class SessionState(str, Enum):
    LOADING = "loading"
    READY = "ready"
    ACTIVE = "active"
    INACTIVE = "inactive"
    DESTROYED = "destroyed"


LIVE_STATES = frozenset(
    {SessionState.LOADING, SessionState.READY, SessionState.ACTIVE, SessionState.INACTIVE}
)
ACTIVATABLE_STATES = frozenset({SessionState.READY, SessionState.ACTIVE, SessionState.INACTIVE})


class SessionEventKind(str, Enum):
    CREATED = "created"
    READY = "ready"
    ACTIVATED = "activated"
    DEACTIVATED = "deactivated"
    DESTROYED = "destroyed"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Session:
    id: str
    project_id: str
    name: str
    cwd: str = ""
    created_at: datetime = field(default_factory=utc_now)
    last_active_at: datetime | None = None
    state: SessionState = SessionState.LOADING
    is_temporary: bool = False
    failure: ErrorCode | None = None

    @property
    def is_live(self) -> bool:
        return self.state in LIVE_STATES


@dataclass(frozen=True)
class SessionEvent:
    session_id: str
    kind: SessionEventKind
    message: str = ""
    error: ErrorCode | None = None


@dataclass(frozen=True)
class DataFrame:
    session_id: str
    payload: str


@dataclass(frozen=True)
class ProcessExit:
    session_id: str
    exit_code: int | None = None


@dataclass(frozen=True)
class ViewGeometry:
    """Pixel extent of a terminal container and the glyph cell size of its font."""

    width: float
    height: float
    cell_width: float
    cell_height: float
    padding_x: float = 0.0
    padding_y: float = 0.0


class TerminalView(Protocol):
    def write(self, data: str) -> None: ...

    def measure(self) -> ViewGeometry | None: ...


@dataclass
class TerminalBinding:
    session_id: str
    view: TerminalView | None = None
    pending: list[str] = field(default_factory=list)
    pending_chars: int = 0

    @property
    def is_attached(self) -> bool:
        return self.view is not None

    def buffer(self, payload: str) -> None:
        self.pending.append(payload)
        self.pending_chars += len(payload)

    def pending_text(self) -> str:
        return "".join(self.pending)

    def clear_pending(self) -> None:
        self.pending.clear()
        self.pending_chars = 0
