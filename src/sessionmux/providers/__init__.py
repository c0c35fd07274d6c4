"""Provider/account selection package."""

from .context import ProviderAccountContext
from .models import (
    Account,
    ActivationState,
    Provider,
    ProviderKind,
    RefreshResult,
    StoreChange,
    SwitchResult,
    SwitchState,
)
from .store import AccountStore, ConfigAccountStore

__all__ = [
    "Account",
    "AccountStore",
    "ActivationState",
    "ConfigAccountStore",
    "Provider",
    "ProviderAccountContext",
    "ProviderKind",
    "RefreshResult",
    "StoreChange",
    "SwitchResult",
    "SwitchState",
]
