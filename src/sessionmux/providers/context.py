"""Process-wide provider/account selection with a serialized switch protocol."""

from __future__ import annotations

import logging as py_logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from sessionmux.errors import ErrorCode, SessionMuxError
from sessionmux.providers.models import (
    Account,
    Provider,
    RefreshResult,
    StoreChange,
    SwitchResult,
    SwitchState,
)
from sessionmux.providers.store import AccountStore
from sessionmux.terminal.broadcast import NotificationBroadcaster, format_switch_notice

logger = py_logging.getLogger(__name__)

T = TypeVar("T")
WarningSink = Callable[[str], None]


class ProviderAccountContext:
    """Single writer for the active provider and account.

    Switches are serialized: while one is in flight every other switch call
    fails with BUSY. A switch persists through the store first and only then
    commits in memory, so callers never observe a half-applied selection.
    """

    def __init__(
        self,
        store: AccountStore,
        broadcaster: NotificationBroadcaster | None = None,
        *,
        on_warning: WarningSink | None = None,
    ) -> None:
        self._store = store
        self._broadcaster = broadcaster
        self._on_warning = on_warning
        self.state = SwitchState.IDLE
        self.active_provider_id = ""
        self.active_account_id: str | None = None
        self.stale_selection = False
        self._providers: dict[str, Provider] = {}
        self._unsubscribe = store.subscribe(self.handle_store_change)

    @property
    def providers(self) -> list[Provider]:
        return list(self._providers.values())

    def snapshot(self) -> tuple[str, str | None]:
        return self.active_provider_id, self.active_account_id

    def active_provider(self) -> Provider | None:
        return self._providers.get(self.active_provider_id)

    def active_account(self) -> Account | None:
        provider = self.active_provider()
        if provider is None:
            return None
        return provider.find_account(self.active_account_id)

    def launch_environment(self) -> dict[str, str]:
        provider = self.active_provider()
        if provider is None:
            return {}
        return provider.launch_environment(self.active_account())

    def close(self) -> None:
        self._unsubscribe()

    async def load(self) -> None:
        self._replace_providers(await self._call_store(self._store.list_providers))
        selection = await self._call_store(self._store.active_selection)
        if selection is None:
            return
        self.active_provider_id = selection.provider_id
        self.active_account_id = selection.account_id
        self.stale_selection = not self._selection_exists()
        logger.info(
            "provider-context-loaded provider=%s account=%s stale=%s",
            self.active_provider_id,
            self.active_account_id,
            self.stale_selection,
        )

    async def switch_provider(self, provider_id: str) -> SwitchResult:
        self._begin_switch(f"provider={provider_id}")
        try:
            self._replace_providers(await self._call_store(self._store.list_providers))
            provider = self._must_get_provider(provider_id)
            account = provider.default_account()
            warnings = self._activation_warnings(provider, account)

            account_id = account.id if account is not None else None
            await self._call_store(lambda: self._store.set_active_selection(provider.id, account_id))

            return self._commit(provider, account, warnings)
        finally:
            self.state = SwitchState.IDLE

    async def switch_account(self, provider_id: str, account_id: str) -> SwitchResult:
        self._begin_switch(f"provider={provider_id} account={account_id}")
        try:
            provider = self._must_get_provider(provider_id)
            account = provider.find_account(account_id)
            if account is None:
                raise SessionMuxError(
                    f"Account not found: {provider_id}/{account_id}",
                    code=ErrorCode.NOT_FOUND,
                    hint="Refresh accounts and pick an existing one.",
                )
            warnings = self._activation_warnings(provider, account)
            await self._call_store(lambda: self._store.set_active_account(provider.id, account.id))
            return self._commit(provider, account, warnings)
        finally:
            self.state = SwitchState.IDLE

    async def refresh_accounts(self) -> RefreshResult:
        providers = await self._call_store(self._store.refresh_accounts)
        self._replace_providers(providers)
        # The store reports an external selection before the new provider list is in place.
        selection = await self._call_store(self._store.active_selection)
        if selection is not None and (selection.provider_id, selection.account_id) != self.snapshot():
            self.handle_store_change(selection)
        self.stale_selection = bool(self.active_provider_id) and not self._selection_exists()
        if self.stale_selection:
            logger.warning(
                "provider-selection-stale provider=%s account=%s",
                self.active_provider_id,
                self.active_account_id,
            )
        return RefreshResult(providers=list(providers), stale_selection=self.stale_selection)

    def handle_store_change(self, change: StoreChange) -> None:
        if self.state == SwitchState.SWITCHING:
            return
        if (change.provider_id, change.account_id) == self.snapshot():
            return
        provider = self._providers.get(change.provider_id)
        if provider is None:
            logger.warning("store-change-ignored provider=%s reason=unknown-provider", change.provider_id)
            return
        account = provider.find_account(change.account_id)
        if change.account_id and account is None:
            logger.warning(
                "store-change-ignored provider=%s account=%s reason=unknown-account",
                change.provider_id,
                change.account_id,
            )
            return
        self._commit(provider, account, self._activation_warnings(provider, account))

    def _begin_switch(self, target: str) -> None:
        if self.state == SwitchState.SWITCHING:
            logger.info("provider-switch-rejected %s reason=busy", target)
            raise SessionMuxError(
                "A provider switch is already in progress.",
                code=ErrorCode.BUSY,
                hint="Retry after the current switch completes.",
            )
        self.state = SwitchState.SWITCHING
        logger.debug("provider-switch-start %s", target)

    def _commit(self, provider: Provider, account: Account | None, warnings: tuple[str, ...]) -> SwitchResult:
        self.active_provider_id = provider.id
        self.active_account_id = account.id if account is not None else None
        self.stale_selection = False
        logger.info(
            "provider-switch-committed provider=%s account=%s warnings=%s",
            provider.id,
            self.active_account_id,
            len(warnings),
        )
        if self._broadcaster is not None:
            self._broadcaster.broadcast(format_switch_notice(provider, account, warnings))
        return SwitchResult(provider_id=provider.id, account_id=self.active_account_id, warnings=warnings)

    def _activation_warnings(self, provider: Provider, account: Account | None) -> tuple[str, ...]:
        if account is None or account.is_activated:
            return ()
        warning = f"Account '{account.display_name or account.id}' of {provider.name} is not activated."
        logger.warning("provider-account-not-activated provider=%s account=%s", provider.id, account.id)
        if self._on_warning is not None:
            try:
                self._on_warning(warning)
            except Exception:
                logger.exception("warning sink failed")
        return (warning,)

    def _must_get_provider(self, provider_id: str) -> Provider:
        provider = self._providers.get(provider_id)
        if provider is None:
            raise SessionMuxError(
                f"Provider not found: {provider_id}",
                code=ErrorCode.NOT_FOUND,
                hint="Pick one of the configured providers.",
            )
        return provider

    def _selection_exists(self) -> bool:
        provider = self._providers.get(self.active_provider_id)
        if provider is None:
            return False
        if self.active_account_id is None:
            return True
        return provider.find_account(self.active_account_id) is not None

    def _replace_providers(self, providers: list[Provider]) -> None:
        self._providers = {provider.id: provider for provider in providers}

    async def _call_store(self, operation: Callable[[], Awaitable[T]]) -> T:
        try:
            return await operation()
        except SessionMuxError:
            raise
        except Exception as exc:
            raise SessionMuxError(
                "Account store operation failed.",
                code=ErrorCode.STORE_ERROR,
                hint=str(exc) or "Check the account store.",
            ) from exc
