"""Command line entrypoint for inspecting and switching providers."""

from __future__ import annotations

import argparse
import asyncio
import logging as py_logging
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import TextIO

from .errors import ErrorCode, ExitCode, SessionMuxError, exit_code_for, user_facing_error
from .logging import configure_logging, default_log_path
from .providers.context import ProviderAccountContext
from .providers.models import Provider
from .providers.store import ConfigAccountStore

_VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARN", "ERROR")


def _log_level_type(value: str) -> str:
    normalized = value.upper()
    if normalized == "WARNING":
        normalized = "WARN"
    if normalized not in _VALID_LOG_LEVELS:
        accepted = ", ".join(_VALID_LOG_LEVELS)
        raise argparse.ArgumentTypeError(f"--log-level must be one of: {accepted}")
    return normalized


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sessionmux")
    parser.add_argument("--config", type=Path, default=None, help="Path to config.toml")
    parser.add_argument("--log-level", type=_log_level_type, default="WARN")
    parser.add_argument("--log-file", type=Path, default=None)

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("providers", help="List providers and their accounts")

    use_provider = commands.add_parser("use-provider", help="Switch the active provider")
    use_provider.add_argument("provider_id")

    use_account = commands.add_parser("use-account", help="Switch the active account")
    use_account.add_argument("provider_id")
    use_account.add_argument("account_id")

    commands.add_parser("refresh", help="Reload accounts and report a stale selection")
    return parser


def render_providers(context: ProviderAccountContext) -> list[str]:
    active_provider, active_account = context.snapshot()
    lines: list[str] = []
    for provider in context.providers:
        marker = "*" if provider.id == active_provider else " "
        lines.append(f"{marker} {provider.id}  {provider.name} ({provider.kind.label})  {provider.endpoint_for(None)}")
        for account in provider.accounts:
            selected = "*" if provider.id == active_provider and account.id == active_account else " "
            lines.append(f"    {selected} {account.id}  {account.display_name}  {account.activation_state.value}")
    if not lines:
        lines.append("No providers configured.")
    return lines


def _describe(provider: Provider | None, account_id: str | None) -> str:
    if provider is None:
        return "none"
    if account_id:
        return f"{provider.name} / {account_id}"
    return provider.name


async def run_command(namespace: argparse.Namespace, out: TextIO) -> int:
    store = ConfigAccountStore(namespace.config)
    warnings: list[str] = []
    context = ProviderAccountContext(store, on_warning=warnings.append)
    try:
        await context.load()
        if namespace.command == "providers":
            for line in render_providers(context):
                print(line, file=out)
            return int(ExitCode.SUCCESS)

        if namespace.command == "use-provider":
            result = await context.switch_provider(namespace.provider_id)
        elif namespace.command == "use-account":
            result = await context.switch_account(namespace.provider_id, namespace.account_id)
        elif namespace.command == "refresh":
            refreshed = await context.refresh_accounts()
            print(f"Providers: {len(refreshed.providers)}", file=out)
            if refreshed.stale_selection:
                provider_id, account_id = context.snapshot()
                print(
                    f"Warning: active selection {provider_id}/{account_id or '-'} no longer exists.",
                    file=out,
                )
            return int(ExitCode.SUCCESS)
        else:
            raise SessionMuxError(
                f"Unknown command: {namespace.command}",
                code=ErrorCode.INVALID_ARGS,
                hint="Run sessionmux --help.",
            )

        print(f"Active: {_describe(context.active_provider(), result.account_id)}", file=out)
        for warning in warnings:
            print(f"Warning: {warning}", file=out)
        return int(ExitCode.SUCCESS)
    finally:
        context.close()


def main(argv: Sequence[str] | None = None, *, out: TextIO | None = None) -> int:
    log_path = default_log_path()
    logger = configure_logging(level="WARN", log_file=log_path)
    parser = build_parser()
    try:
        namespace = parser.parse_args(argv)
    except SystemExit as exc:
        if exc.code not in (None, 0):
            logger.warning("Argument parsing failed with exit code %s", exc.code)
        return int(exc.code or 0)

    if namespace.log_file is not None:
        log_path = namespace.log_file.expanduser()
    logger = configure_logging(level=namespace.log_level, log_file=log_path)

    try:
        logger.debug("Running command %s", namespace.command)
        return asyncio.run(run_command(namespace, out or sys.stdout))
    except SessionMuxError as exc:
        logger.error(
            "Handled SessionMuxError (code=%s): %s",
            exc.code.name,
            exc.message,
            exc_info=logger.isEnabledFor(py_logging.DEBUG),
        )
        print(user_facing_error(exc.message, hint=exc.hint), file=sys.stderr)
        return int(exit_code_for(exc.code))
    except Exception:
        logger.exception("Unhandled exception in CLI entrypoint")
        print(user_facing_error("Unexpected runtime failure", hint=f"Inspect logs: {log_path}"), file=sys.stderr)
        return int(ExitCode.RUNTIME_ERROR)


def run(argv: Sequence[str] | None = None) -> int:
    return main(argv)
