"""XDG config loading/saving."""

from __future__ import annotations

import os
import shlex
import sys
from contextlib import suppress
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

if sys.version_info >= (3, 11):
    import tomllib
else:  # pragma: no cover
    import tomli as tomllib

DEFAULT_CONFIG_PATH = Path("~/.config/sessionmux/config.toml").expanduser()
DEFAULT_LAUNCH_COMMAND = ("claude",)
DEFAULT_MAX_SESSIONS = 16
DEFAULT_RESIZE_DEBOUNCE_SECONDS = 0.05
DEFAULT_STATUS_POLL_INTERVAL_SECONDS = 5.0
DEFAULT_COLS = 80
DEFAULT_ROWS = 24
LAUNCH_COMMAND_ENV = "SESSIONMUX_LAUNCH_COMMAND"

_VALID_PROVIDER_KINDS = {"official", "third_party"}


class AccountConfig(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    id: str
    display_name: str = ""
    base_url: str = ""
    api_key: str = ""
    authorization: str = ""

    @field_validator("id")
    @classmethod
    def _validate_id(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Account id cannot be empty")
        return value.strip()


class ProviderConfig(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    id: str
    name: str = ""
    kind: str = "third_party"
    base_url: str = ""
    default_account_id: str = ""
    accounts: list[AccountConfig] = Field(default_factory=list)

    @field_validator("id")
    @classmethod
    def _validate_id(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Provider id cannot be empty")
        return value.strip()

    @field_validator("kind")
    @classmethod
    def _validate_kind(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in _VALID_PROVIDER_KINDS:
            raise ValueError(f"Invalid provider kind: {value}")
        return normalized


class AppConfig(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    launch_command: list[str] = Field(default_factory=lambda: list(DEFAULT_LAUNCH_COMMAND))
    max_sessions: int = Field(default=DEFAULT_MAX_SESSIONS, ge=1, le=64)
    resize_debounce_seconds: float = Field(default=DEFAULT_RESIZE_DEBOUNCE_SECONDS, ge=0.0, le=5.0)
    status_poll_interval_seconds: float = Field(
        default=DEFAULT_STATUS_POLL_INTERVAL_SECONDS, gt=0.0, le=3600.0
    )
    default_cols: int = Field(default=DEFAULT_COLS, ge=2, le=1000)
    default_rows: int = Field(default=DEFAULT_ROWS, ge=1, le=1000)
    providers: list[ProviderConfig] = Field(default_factory=list)
    active_provider_id: str = ""
    active_account_id: str = ""

    @field_validator("launch_command")
    @classmethod
    def _validate_launch_command(cls, value: list[str]) -> list[str]:
        cleaned = [item for item in value if item.strip()]
        if not cleaned:
            raise ValueError("Launch command cannot be empty")
        return cleaned

    def find_provider(self, provider_id: str) -> ProviderConfig | None:
        for provider in self.providers:
            if provider.id == provider_id:
                return provider
        return None


def get_config_path(path: str | Path | None = None) -> Path:
    if path is None:
        return DEFAULT_CONFIG_PATH
    return Path(path).expanduser()


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def _toml_scalar(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return f'"{_escape(value)}"'
    if isinstance(value, list):
        return "[" + ", ".join(_toml_scalar(item) for item in value) + "]"
    raise TypeError(f"Unsupported TOML scalar type: {type(value)!r}")


def _normalize_accounts(value: object) -> list[AccountConfig]:
    if not isinstance(value, list):
        return []
    accounts: list[AccountConfig] = []
    seen: set[str] = set()
    for item in value:
        if not isinstance(item, dict):
            continue
        try:
            account = AccountConfig.model_validate(item)
        except ValidationError:
            continue
        if account.id in seen:
            continue
        seen.add(account.id)
        accounts.append(account)
    return accounts


def _normalize_providers(value: object) -> list[ProviderConfig]:
    if not isinstance(value, list):
        return []
    providers: list[ProviderConfig] = []
    seen: set[str] = set()
    for item in value:
        if not isinstance(item, dict):
            continue
        payload = {key: raw for key, raw in item.items() if key != "accounts"}
        try:
            provider = ProviderConfig.model_validate(payload)
        except ValidationError:
            continue
        if provider.id in seen:
            continue
        seen.add(provider.id)
        provider.accounts = _normalize_accounts(item.get("accounts", []))
        providers.append(provider)
    return providers


def _sanitize(raw: dict[str, object]) -> AppConfig:
    cfg = AppConfig()

    launch_command = raw.get("launch_command", cfg.launch_command)
    if isinstance(launch_command, str):
        launch_command = shlex.split(launch_command)
    if isinstance(launch_command, list) and all(isinstance(item, str) for item in launch_command):
        with suppress(ValidationError):
            cfg.launch_command = list(launch_command)
    env_command = os.getenv(LAUNCH_COMMAND_ENV, "").strip()
    if env_command:
        cfg.launch_command = shlex.split(env_command)

    max_sessions = raw.get("max_sessions", cfg.max_sessions)
    if isinstance(max_sessions, int) and not isinstance(max_sessions, bool) and 1 <= max_sessions <= 64:
        cfg.max_sessions = max_sessions

    for key in ("resize_debounce_seconds", "status_poll_interval_seconds"):
        value = raw.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            with suppress(ValidationError):
                setattr(cfg, key, float(value))

    for key in ("default_cols", "default_rows"):
        value = raw.get(key)
        if isinstance(value, int) and not isinstance(value, bool):
            with suppress(ValidationError):
                setattr(cfg, key, value)

    cfg.providers = _normalize_providers(raw.get("providers", []))

    active_provider_id = raw.get("active_provider_id", "")
    if isinstance(active_provider_id, str):
        cfg.active_provider_id = active_provider_id.strip()
    active_account_id = raw.get("active_account_id", "")
    if isinstance(active_account_id, str):
        cfg.active_account_id = active_account_id.strip()

    return cfg


def load_config(path: str | Path | None = None) -> AppConfig:
    resolved = get_config_path(path)
    if not resolved.exists():
        return _sanitize({})
    try:
        with resolved.open("rb") as handle:
            raw = tomllib.load(handle)
    except (tomllib.TOMLDecodeError, OSError):
        return _sanitize({})
    if not isinstance(raw, dict):
        return _sanitize({})
    return _sanitize(raw)


def save_config(config: AppConfig, path: str | Path | None = None) -> Path:
    resolved = get_config_path(path)
    resolved.parent.mkdir(parents=True, exist_ok=True)

    lines = [
        f"launch_command = {_toml_scalar(list(config.launch_command))}",
        f"max_sessions = {_toml_scalar(config.max_sessions)}",
        f"resize_debounce_seconds = {_toml_scalar(config.resize_debounce_seconds)}",
        f"status_poll_interval_seconds = {_toml_scalar(config.status_poll_interval_seconds)}",
        f"default_cols = {_toml_scalar(config.default_cols)}",
        f"default_rows = {_toml_scalar(config.default_rows)}",
        f"active_provider_id = {_toml_scalar(config.active_provider_id)}",
        f"active_account_id = {_toml_scalar(config.active_account_id)}",
    ]

    for provider in config.providers:
        lines.extend(
            [
                "",
                "[[providers]]",
                f"id = {_toml_scalar(provider.id)}",
                f"name = {_toml_scalar(provider.name)}",
                f"kind = {_toml_scalar(provider.kind)}",
                f"base_url = {_toml_scalar(provider.base_url)}",
                f"default_account_id = {_toml_scalar(provider.default_account_id)}",
            ]
        )
        for account in provider.accounts:
            lines.extend(
                [
                    "",
                    "[[providers.accounts]]",
                    f"id = {_toml_scalar(account.id)}",
                    f"display_name = {_toml_scalar(account.display_name)}",
                    f"base_url = {_toml_scalar(account.base_url)}",
                    f"api_key = {_toml_scalar(account.api_key)}",
                    f"authorization = {_toml_scalar(account.authorization)}",
                ]
            )

    resolved.write_text("\n".join(lines) + "\n", encoding="utf-8")
    with suppress(OSError):
        resolved.chmod(0o600)
    return resolved
