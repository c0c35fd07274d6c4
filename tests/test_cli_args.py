from __future__ import annotations

import io
from contextlib import redirect_stderr
from pathlib import Path

import pytest

from sessionmux import cli
from sessionmux.config import AccountConfig, AppConfig, ProviderConfig, load_config, save_config
from sessionmux.errors import ExitCode


@pytest.fixture
def config_path(tmp_path: Path) -> Path:
    path = tmp_path / "config.toml"
    save_config(
        AppConfig(
            providers=[
                ProviderConfig(
                    id="official",
                    name="Claude",
                    kind="official",
                    accounts=[AccountConfig(id="me", display_name="Personal", authorization="tok")],
                ),
                ProviderConfig(
                    id="relay",
                    name="Relay",
                    base_url="https://relay.example.com",
                    accounts=[AccountConfig(id="k1", api_key="sk-1"), AccountConfig(id="k2", display_name="Spare")],
                ),
            ],
            active_provider_id="official",
            active_account_id="me",
        ),
        path,
    )
    return path


def _run(argv: list[str], tmp_path: Path) -> tuple[int, str, str]:
    out = io.StringIO()
    err = io.StringIO()
    with redirect_stderr(err):
        code = cli.main(["--log-file", str(tmp_path / "cli.log"), *argv], out=out)
    return code, out.getvalue(), err.getvalue()


def test_cli_help_includes_public_commands() -> None:
    help_text = cli.build_parser().format_help()

    for flag in ("--config", "--log-level", "--log-file", "providers", "use-provider", "use-account", "refresh"):
        assert flag in help_text


def test_missing_command_is_an_argument_error(tmp_path: Path) -> None:
    code, _out, _err = _run([], tmp_path)

    assert code == 2


def test_invalid_log_level_is_rejected(tmp_path: Path) -> None:
    code, _out, _err = _run(["--log-level", "LOUD", "providers"], tmp_path)

    assert code == 2


def test_providers_lists_accounts_and_marks_selection(config_path: Path, tmp_path: Path) -> None:
    code, out, _err = _run(["--config", str(config_path), "providers"], tmp_path)

    assert code == int(ExitCode.SUCCESS)
    lines = out.splitlines()
    assert lines[0].startswith("* official  Claude (official)")
    assert any(line.strip().startswith("* me  Personal  activated") for line in lines)
    assert any("k2  Spare  not_activated" in line for line in lines)


def test_use_provider_persists_and_reports(config_path: Path, tmp_path: Path) -> None:
    code, out, _err = _run(["--config", str(config_path), "use-provider", "relay"], tmp_path)

    assert code == int(ExitCode.SUCCESS)
    assert "Active: Relay / k1" in out
    saved = load_config(config_path)
    assert (saved.active_provider_id, saved.active_account_id) == ("relay", "k1")


def test_use_account_warns_for_unactivated_account(config_path: Path, tmp_path: Path) -> None:
    code, out, _err = _run(["--config", str(config_path), "use-account", "relay", "k2"], tmp_path)

    assert code == int(ExitCode.SUCCESS)
    assert "Warning: Account 'Spare' of Relay is not activated." in out
    assert load_config(config_path).active_account_id == "k2"


def test_unknown_provider_maps_to_not_found_exit(config_path: Path, tmp_path: Path) -> None:
    code, _out, err = _run(["--config", str(config_path), "use-provider", "nope"], tmp_path)

    assert code == int(ExitCode.NOT_FOUND)
    assert "Error: Provider not found: nope." in err
    assert "Next step" in err


def test_refresh_reports_stale_selection(config_path: Path, tmp_path: Path) -> None:
    cfg = load_config(config_path)
    cfg.active_provider_id = "relay"
    cfg.active_account_id = "gone"
    save_config(cfg, config_path)

    code, out, _err = _run(["--config", str(config_path), "refresh"], tmp_path)

    assert code == int(ExitCode.SUCCESS)
    assert "Providers: 2" in out
    assert "Warning: active selection relay/gone no longer exists." in out


def test_unexpected_failure_returns_runtime_error(config_path: Path, tmp_path: Path, monkeypatch) -> None:
    async def explode(_namespace, _out) -> int:
        raise RuntimeError("boom")

    monkeypatch.setattr(cli, "run_command", explode)

    code, _out, err = _run(["--config", str(config_path), "providers"], tmp_path)

    assert code == int(ExitCode.RUNTIME_ERROR)
    assert "Unexpected runtime failure" in err
