"""Provider/account store backed by the config file."""

from __future__ import annotations

import logging as py_logging
from collections.abc import Callable
from pathlib import Path
from typing import Protocol

from sessionmux.config import AppConfig, load_config, save_config
from sessionmux.errors import ErrorCode, SessionMuxError
from sessionmux.providers.models import Provider, StoreChange, provider_from_config

logger = py_logging.getLogger(__name__)

ChangeListener = Callable[[StoreChange], None]


class AccountStore(Protocol):
    async def list_providers(self) -> list[Provider]: ...

    async def active_selection(self) -> StoreChange | None: ...

    async def set_active_provider(self, provider_id: str) -> None: ...

    async def set_active_account(self, provider_id: str, account_id: str) -> None: ...

    async def set_active_selection(self, provider_id: str, account_id: str | None) -> None: ...

    async def refresh_accounts(self) -> list[Provider]: ...

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]: ...


class ConfigAccountStore:
    """Reads providers from the TOML config and persists the active selection there."""

    def __init__(self, path: str | Path | None = None, *, config: AppConfig | None = None) -> None:
        self.path = path
        self._config = config if config is not None else load_config(path)
        self._listeners: list[ChangeListener] = []

    @property
    def config(self) -> AppConfig:
        return self._config

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def list_providers(self) -> list[Provider]:
        return [provider_from_config(item) for item in self._config.providers]

    async def active_selection(self) -> StoreChange | None:
        if not self._config.active_provider_id:
            return None
        return StoreChange(
            provider_id=self._config.active_provider_id,
            account_id=self._config.active_account_id or None,
        )

    async def set_active_provider(self, provider_id: str) -> None:
        self._must_have_provider(provider_id)
        account_id = self._config.active_account_id
        if self._config.active_provider_id != provider_id:
            account_id = ""
        self._commit(provider_id, account_id)

    async def set_active_account(self, provider_id: str, account_id: str) -> None:
        self._must_have_account(provider_id, account_id)
        self._commit(provider_id, account_id)

    async def set_active_selection(self, provider_id: str, account_id: str | None) -> None:
        """Persist provider and account together in one save."""
        if account_id is None:
            self._must_have_provider(provider_id)
        else:
            self._must_have_account(provider_id, account_id)
        self._commit(provider_id, account_id or "")

    async def refresh_accounts(self) -> list[Provider]:
        previous = (self._config.active_provider_id, self._config.active_account_id)
        self._config = load_config(self.path)
        current = (self._config.active_provider_id, self._config.active_account_id)
        if current != previous and current[0]:
            logger.info("store-selection-changed provider=%s account=%s", current[0], current[1])
            self._notify(StoreChange(provider_id=current[0], account_id=current[1] or None))
        return await self.list_providers()

    def _must_have_provider(self, provider_id: str) -> None:
        if self._config.find_provider(provider_id) is None:
            raise SessionMuxError(
                f"Provider not found: {provider_id}",
                code=ErrorCode.NOT_FOUND,
                hint="Add the provider to the config file first.",
            )

    def _must_have_account(self, provider_id: str, account_id: str) -> None:
        provider = self._config.find_provider(provider_id)
        if provider is None or not any(item.id == account_id for item in provider.accounts):
            raise SessionMuxError(
                f"Account not found: {provider_id}/{account_id}",
                code=ErrorCode.NOT_FOUND,
                hint="Refresh accounts and pick an existing one.",
            )

    def _commit(self, provider_id: str, account_id: str) -> None:
        previous = (self._config.active_provider_id, self._config.active_account_id)
        self._config.active_provider_id = provider_id
        self._config.active_account_id = account_id
        try:
            save_config(self._config, self.path)
        except OSError as exc:
            self._config.active_provider_id, self._config.active_account_id = previous
            raise SessionMuxError(
                "Failed to persist provider selection.",
                code=ErrorCode.STORE_ERROR,
                hint=str(exc) or "Check config directory permissions.",
            ) from exc
        self._notify(
            StoreChange(
                provider_id=self._config.active_provider_id,
                account_id=self._config.active_account_id or None,
            )
        )

    def _notify(self, change: StoreChange) -> None:
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                logger.exception("store listener failed provider=%s", change.provider_id)
