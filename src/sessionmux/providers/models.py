"""Provider and account domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from sessionmux.config import AccountConfig, ProviderConfig

OFFICIAL_ENDPOINT = "https://api.anthropic.com"
BASE_URL_ENV = "ANTHROPIC_BASE_URL"
API_KEY_ENV = "ANTHROPIC_API_KEY"
AUTH_TOKEN_ENV = "ANTHROPIC_AUTH_TOKEN"


class ProviderKind(str, Enum):
    OFFICIAL = "official"
    THIRD_PARTY = "third_party"

    @property
    def label(self) -> str:
        if self == ProviderKind.OFFICIAL:
            return "official"
        return "third-party"


class ActivationState(str, Enum):
    ACTIVATED = "activated"
    NOT_ACTIVATED = "not_activated"


class SwitchState(str, Enum):
    IDLE = "idle"
    SWITCHING = "switching"


@dataclass(frozen=True)
class Account:
    id: str
    display_name: str = ""
    activation_state: ActivationState = ActivationState.NOT_ACTIVATED
    base_url: str = ""
    api_key: str = ""
    authorization: str = ""

    @property
    def is_activated(self) -> bool:
        return self.activation_state == ActivationState.ACTIVATED


@dataclass(frozen=True)
class Provider:
    id: str
    name: str
    kind: ProviderKind = ProviderKind.THIRD_PARTY
    base_url: str = ""
    accounts: tuple[Account, ...] = ()
    default_account_id: str = ""

    def find_account(self, account_id: str | None) -> Account | None:
        if not account_id:
            return None
        for account in self.accounts:
            if account.id == account_id:
                return account
        return None

    def default_account(self) -> Account | None:
        explicit = self.find_account(self.default_account_id)
        if explicit is not None:
            return explicit
        return self.accounts[0] if self.accounts else None

    def endpoint_for(self, account: Account | None) -> str:
        if self.kind == ProviderKind.OFFICIAL:
            return self.base_url or OFFICIAL_ENDPOINT
        if account is not None and account.base_url:
            return account.base_url
        return self.base_url or OFFICIAL_ENDPOINT

    def launch_environment(self, account: Account | None) -> dict[str, str]:
        env = {BASE_URL_ENV: self.endpoint_for(account)}
        if account is None:
            return env
        if self.kind == ProviderKind.OFFICIAL and account.authorization:
            env[AUTH_TOKEN_ENV] = account.authorization
        elif account.api_key:
            env[API_KEY_ENV] = account.api_key
        return env


@dataclass(frozen=True)
class StoreChange:
    provider_id: str
    account_id: str | None = None


@dataclass(frozen=True)
class SwitchResult:
    provider_id: str
    account_id: str | None
    warnings: tuple[str, ...] = ()


@dataclass
class RefreshResult:
    providers: list[Provider] = field(default_factory=list)
    stale_selection: bool = False


def account_from_config(config: AccountConfig, kind: ProviderKind) -> Account:
    if kind == ProviderKind.OFFICIAL:
        activated = bool(config.authorization.strip())
    else:
        activated = bool(config.api_key.strip())
    return Account(
        id=config.id,
        display_name=config.display_name or config.id,
        activation_state=ActivationState.ACTIVATED if activated else ActivationState.NOT_ACTIVATED,
        base_url=config.base_url.strip(),
        api_key=config.api_key.strip(),
        authorization=config.authorization.strip(),
    )


def provider_from_config(config: ProviderConfig) -> Provider:
    kind = ProviderKind(config.kind)
    return Provider(
        id=config.id,
        name=config.name or config.id,
        kind=kind,
        base_url=config.base_url.strip(),
        accounts=tuple(account_from_config(item, kind) for item in config.accounts),
        default_account_id=config.default_account_id.strip(),
    )
