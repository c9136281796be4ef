from __future__ import annotations

from pathlib import Path
from typing import NoReturn, Optional

import typer

from ....core.config import BotConfig, ConfigError, load_config
from ....integrations.discord.config import DiscordBotConfig, DiscordBotConfigError


def raise_exit(message: str, *, cause: Optional[BaseException] = None) -> NoReturn:
    typer.echo(message, err=True)
    if cause is not None:
        raise typer.Exit(code=1) from cause
    raise typer.Exit(code=1)


def require_bot_config(path: Optional[Path]) -> tuple[BotConfig, DiscordBotConfig]:
    """Load ``slashbot.yml`` and its ``discord_bot`` section or exit with code 1."""
    try:
        config = load_config(path)
    except ConfigError as exc:
        raise_exit(str(exc), cause=exc)
    try:
        discord_cfg = DiscordBotConfig.from_raw(
            root=config.root, raw=config.section("discord_bot")
        )
    except DiscordBotConfigError as exc:
        raise_exit(str(exc), cause=exc)
    return config, discord_cfg
