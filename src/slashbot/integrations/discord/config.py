from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

from .constants import (
    DISCORD_INTENT_DIRECT_MESSAGES,
    DISCORD_INTENT_GUILD_MESSAGES,
    DISCORD_INTENT_GUILDS,
    DISCORD_INTENT_MESSAGE_CONTENT,
    DISCORD_MAX_MESSAGE_LENGTH,
)

SECTION = "discord_bot"
DEFAULT_BOT_TOKEN_ENV = "SLASHBOT_DISCORD_BOT_TOKEN"
DEFAULT_APP_ID_ENV = "SLASHBOT_DISCORD_APP_ID"
DEFAULT_STATE_FILE = ".slashbot/state.sqlite3"
DEFAULT_COMMAND_SCOPE = "global"
COMMAND_SCOPES = ("global", "guild")
DEFAULT_REST_TIMEOUT_SECONDS = 10.0
# MESSAGE_CONTENT is needed for /snipe history and AFK mention notices.
DEFAULT_INTENTS = (
    DISCORD_INTENT_GUILDS
    | DISCORD_INTENT_GUILD_MESSAGES
    | DISCORD_INTENT_DIRECT_MESSAGES
    | DISCORD_INTENT_MESSAGE_CONTENT
)


class DiscordBotConfigError(Exception):
    """Raised when the discord_bot config section is invalid."""


@dataclass(frozen=True)
class DiscordCommandRegistration:
    enabled: bool
    scope: str
    guild_ids: tuple[str, ...]


@dataclass(frozen=True)
class DiscordBotConfig:
    root: Path
    bot_token_env: str
    app_id_env: str
    bot_token: Optional[str]
    application_id: Optional[str]
    command_registration: DiscordCommandRegistration
    state_file: Path
    intents: int
    max_message_length: int
    rest_timeout_seconds: float = DEFAULT_REST_TIMEOUT_SECONDS

    @classmethod
    def from_raw(cls, *, root: Path, raw: Any) -> "DiscordBotConfig":
        """Validate the ``discord_bot`` section; secrets come from the environment."""
        cfg: Mapping[str, Any] = raw if isinstance(raw, dict) else {}
        bot_token_env = _env_var_name(cfg, "bot_token_env", DEFAULT_BOT_TOKEN_ENV)
        app_id_env = _env_var_name(cfg, "app_id_env", DEFAULT_APP_ID_ENV)

        state_file = cfg.get("state_file", DEFAULT_STATE_FILE)
        if not isinstance(state_file, str) or not state_file.strip():
            raise DiscordBotConfigError(f"{SECTION}.state_file must be a string path")

        intents = _int_setting(cfg, "intents", DEFAULT_INTENTS, minimum=0)
        max_message_length = _int_setting(
            cfg, "max_message_length", DISCORD_MAX_MESSAGE_LENGTH, minimum=1
        )

        return cls(
            root=root,
            bot_token_env=bot_token_env,
            app_id_env=app_id_env,
            bot_token=os.environ.get(bot_token_env) or None,
            application_id=os.environ.get(app_id_env) or None,
            command_registration=_registration(cfg.get("command_registration")),
            state_file=(root / state_file).resolve(),
            intents=intents,
            max_message_length=min(max_message_length, DISCORD_MAX_MESSAGE_LENGTH),
            rest_timeout_seconds=_timeout(cfg.get("rest_timeout_seconds")),
        )

    def require_credentials(self) -> tuple[str, str]:
        """Return ``(bot_token, application_id)`` or explain which env var is unset."""
        if not self.bot_token:
            raise DiscordBotConfigError(
                f"Discord bot token env var {self.bot_token_env} is unset"
            )
        if not self.application_id:
            raise DiscordBotConfigError(
                f"Discord application id env var {self.app_id_env} is unset"
            )
        return self.bot_token, self.application_id


def _env_var_name(cfg: Mapping[str, Any], key: str, default: str) -> str:
    name = str(cfg.get(key, default)).strip()
    if not name:
        raise DiscordBotConfigError(f"{SECTION}.{key} must be non-empty")
    return name


def _int_setting(
    cfg: Mapping[str, Any], key: str, default: int, *, minimum: int
) -> int:
    value = cfg.get(key, default)
    # bool is an int subclass; `intents: true` is a typo, not a bitset.
    if not isinstance(value, int) or isinstance(value, bool):
        raise DiscordBotConfigError(f"{SECTION}.{key} must be an integer")
    if value < minimum:
        raise DiscordBotConfigError(f"{SECTION}.{key} must be >= {minimum}")
    return value


def _timeout(value: Any) -> float:
    if value is None:
        return DEFAULT_REST_TIMEOUT_SECONDS
    try:
        seconds = float(value)
    except (TypeError, ValueError) as exc:
        raise DiscordBotConfigError(
            f"{SECTION}.rest_timeout_seconds must be a number"
        ) from exc
    return seconds if seconds > 0 else DEFAULT_REST_TIMEOUT_SECONDS


def _registration(value: Any) -> DiscordCommandRegistration:
    cfg: Mapping[str, Any] = value if isinstance(value, dict) else {}
    where = f"{SECTION}.command_registration"

    enabled = cfg.get("enabled", True)
    if enabled is None:
        enabled = True
    if not isinstance(enabled, bool):
        raise DiscordBotConfigError(f"{where}.enabled must be a boolean")

    scope = str(cfg.get("scope", DEFAULT_COMMAND_SCOPE)).strip().lower()
    if scope not in COMMAND_SCOPES:
        raise DiscordBotConfigError(f"{where}.scope must be 'global' or 'guild'")

    guild_ids = _string_ids(cfg.get("guild_ids"))
    if scope == "guild" and not guild_ids:
        raise DiscordBotConfigError(f"{where}.guild_ids is required for guild scope")
    return DiscordCommandRegistration(enabled=enabled, scope=scope, guild_ids=guild_ids)


def _string_ids(value: Any) -> tuple[str, ...]:
    """Snowflakes may be written as YAML ints; normalize them to strings."""
    if value is None:
        return ()
    items = value if isinstance(value, (list, tuple, set, frozenset)) else [value]
    return tuple(token for token in (str(item).strip() for item in items) if token)
