import logging
from pathlib import Path

import pytest
from typer.testing import CliRunner

from slashbot import __version__
from slashbot.handlers import build_registry
from slashbot.integrations.discord.config import DiscordBotConfig
from slashbot.surfaces.cli.cli import app
from slashbot.surfaces.cli.commands.bot import _sync_application_commands

runner = CliRunner()


@pytest.fixture()
def no_credentials(monkeypatch):
    monkeypatch.delenv("SLASHBOT_DISCORD_BOT_TOKEN", raising=False)
    monkeypatch.delenv("SLASHBOT_DISCORD_APP_ID", raising=False)


def test_version_flag_prints_version():
    result = runner.invoke(app, ["--version"])

    assert result.exit_code == 0
    assert result.output.strip() == f"slashbot {__version__}"


def test_commands_list_groups_by_category():
    result = runner.invoke(app, ["commands", "list"])

    assert result.exit_code == 0
    lines = result.output.splitlines()
    assert lines[0] == "Utility:"
    assert "  /ping - Check bot latency" in lines
    assert "Info:" in lines
    assert "  /help - Show available commands" in lines


def test_commands_sync_without_credentials_exits(tmp_path: Path, no_credentials):
    result = runner.invoke(app, ["commands", "sync", "--path", str(tmp_path)])

    assert result.exit_code == 1
    assert "SLASHBOT_DISCORD_BOT_TOKEN" in result.output


def test_run_without_credentials_exits(tmp_path: Path, no_credentials):
    result = runner.invoke(app, ["run", "--path", str(tmp_path)])

    assert result.exit_code == 1


def test_invalid_config_exits(tmp_path: Path):
    (tmp_path / "slashbot.yml").write_text("logging:\n  level: LOUD\n", encoding="utf-8")

    result = runner.invoke(app, ["commands", "sync", "--path", str(tmp_path)])

    assert result.exit_code == 1


@pytest.mark.anyio
async def test_sync_helper_pushes_catalogue(tmp_path: Path, fake_rest, monkeypatch):
    monkeypatch.setenv("SLASHBOT_DISCORD_BOT_TOKEN", "tok")
    monkeypatch.setenv("SLASHBOT_DISCORD_APP_ID", "app-9")
    config = DiscordBotConfig.from_raw(
        root=tmp_path, raw={"command_registration": {"scope": "guild", "guild_ids": ["g1"]}}
    )
    opened = {}

    class _Factory:
        def __init__(self, **kwargs):
            opened.update(kwargs)

        async def __aenter__(self):
            return fake_rest

        async def __aexit__(self, *exc_info):
            await fake_rest.close()

    registry = build_registry()
    count = await _sync_application_commands(
        config,
        registry=registry,
        logger=logging.getLogger("test.cli"),
        rest_client_factory=_Factory,
    )

    assert count == len(registry)
    assert opened["bot_token"] == "tok"
    assert fake_rest.operations() == ["sync", "close"]
    synced = fake_rest.calls[0][1]
    assert (synced["application_id"], synced["guild_id"]) == ("app-9", "g1")
