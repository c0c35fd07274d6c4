"""System message fan-out into every live terminal view."""

from __future__ import annotations

import logging as py_logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sessionmux.terminal.bindings import BindingTable

if TYPE_CHECKING:
    from sessionmux.providers.models import Account, Provider

logger = py_logging.getLogger(__name__)

NoticeListener = Callable[[str], None]

_CYAN = "\x1b[36m"
_YELLOW = "\x1b[33m"
_GREY = "\x1b[90m"
_RESET = "\x1b[0m"


@dataclass
class BroadcastReport:
    delivered: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


def format_switch_notice(
    provider: Provider,
    account: Account | None = None,
    warnings: Sequence[str] = (),
) -> str:
    lines = [
        f"{_CYAN}[sessionmux] Provider switched: {provider.name} ({provider.kind.label}){_RESET}",
        f"{_GREY}Endpoint: {provider.endpoint_for(account)}{_RESET}",
    ]
    if account is not None:
        lines.append(f"{_GREY}Account: {account.display_name or account.id}{_RESET}")
    lines.extend(f"{_YELLOW}Warning: {warning}{_RESET}" for warning in warnings)
    lines.append(f"{_GREY}New sessions use this provider; running sessions keep their launch context.{_RESET}")
    return "\r\n" + "\r\n".join(lines) + "\r\n"


class NotificationBroadcaster:
    def __init__(self, bindings: BindingTable) -> None:
        self._bindings = bindings
        self._listeners: list[NoticeListener] = []
        self.history: list[str] = []

    def subscribe(self, listener: NoticeListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def broadcast(self, text: str) -> BroadcastReport:
        report = BroadcastReport()
        for binding in self._bindings.list_bindings():
            if binding.view is None:
                report.skipped.append(binding.session_id)
                continue
            try:
                self._bindings.deliver_system_message(binding.session_id, text)
            except Exception:
                logger.warning("notice-delivery-failed session=%s", binding.session_id, exc_info=True)
                report.failed.append(binding.session_id)
            else:
                report.delivered.append(binding.session_id)

        self.history.append(text)
        for listener in list(self._listeners):
            try:
                listener(text)
            except Exception:
                logger.exception("notice listener failed")
        logger.info(
            "notice-broadcast delivered=%s skipped=%s failed=%s",
            len(report.delivered),
            len(report.skipped),
            len(report.failed),
        )
        return report
