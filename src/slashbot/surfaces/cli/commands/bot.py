from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import typer

from ....core.logging_utils import setup_rotating_logger
from ....handlers import build_registry
from ....integrations.discord.commands import (
    build_application_commands,
    sync_commands,
)
from ....integrations.discord.config import DiscordBotConfig, DiscordBotConfigError
from ....integrations.discord.errors import TransportError
from ....integrations.discord.registry import CommandRegistry
from ....integrations.discord.rest import DiscordRestClient
from ....integrations.discord.service import create_discord_bot_service


async def _sync_application_commands(
    config: DiscordBotConfig,
    *,
    registry: CommandRegistry,
    logger: logging.Logger,
    rest_client_factory: Callable[..., Any] = DiscordRestClient,
    sync_func: Callable[..., Awaitable[None]] = sync_commands,
) -> int:
    bot_token, application_id = config.require_credentials()
    commands = build_application_commands(registry)
    async with rest_client_factory(
        bot_token=bot_token, timeout_seconds=config.rest_timeout_seconds
    ) as rest:
        await sync_func(
            rest,
            application_id=application_id,
            commands=commands,
            scope=config.command_registration.scope,
            guild_ids=config.command_registration.guild_ids,
            logger=logger,
        )
    return len(commands)


def register_bot_commands(
    app: typer.Typer,
    commands_app: typer.Typer,
    *,
    raise_exit: Callable,
    require_bot_config: Callable,
) -> None:
    @app.command("run")
    def bot_run(
        path: Optional[Path] = typer.Option(
            None, "--path", help="Directory holding slashbot.yml, or the file itself"
        ),
    ) -> None:
        """Connect to the gateway and serve slash commands until interrupted."""
        config, discord_cfg = require_bot_config(path)
        try:
            discord_cfg.require_credentials()
            logger = setup_rotating_logger(
                "slashbot", config.logging.file, level=config.logging.level
            )
            service = create_discord_bot_service(
                discord_cfg, logger=logger, bot_config=config
            )
            asyncio.run(service.run_forever())
        except (DiscordBotConfigError, ValueError) as exc:
            raise_exit(str(exc), cause=exc)
        except KeyboardInterrupt:
            typer.echo("Bot stopped.")

    @commands_app.command("list")
    def commands_list() -> None:
        """Print the command catalogue grouped by category."""
        registry = build_registry()
        for category, definitions in registry.all_by_category():
            typer.echo(f"{category}:")
            for definition in sorted(definitions, key=lambda item: item.name):
                typer.echo(f"  /{definition.name} - {definition.description}")

    @commands_app.command("sync")
    def commands_sync(
        path: Optional[Path] = typer.Option(
            None, "--path", help="Directory holding slashbot.yml, or the file itself"
        ),
    ) -> None:
        """Overwrite the platform's command catalogue with the local one."""
        _config, discord_cfg = require_bot_config(path)
        try:
            count = asyncio.run(
                _sync_application_commands(
                    discord_cfg,
                    registry=build_registry(),
                    logger=logging.getLogger("slashbot.commands"),
                )
            )
        except (DiscordBotConfigError, TransportError, ValueError) as exc:
            raise_exit(str(exc), cause=exc)

        typer.echo(f"Synchronized {count} application commands.")
