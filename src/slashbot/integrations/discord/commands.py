from __future__ import annotations

import logging
from typing import Any, Protocol

from ...core.logging_utils import log_event
from .registry import CommandDefinition, CommandRegistry, ParameterSpec

# Application command type for slash commands.
CHAT_INPUT = 1


class CommandSyncRest(Protocol):
    async def bulk_overwrite_application_commands(
        self,
        *,
        application_id: str,
        commands: list[dict[str, Any]],
        guild_id: str | None = None,
    ) -> list[dict[str, Any]]: ...


def build_option(spec: ParameterSpec) -> dict[str, Any]:
    option: dict[str, Any] = {
        "type": int(spec.kind),
        "name": spec.name,
        "description": spec.description,
        "required": spec.required,
    }
    if spec.choices:
        option["choices"] = [
            {"name": choice.name, "value": choice.value} for choice in spec.choices
        ]
    if spec.min_value is not None:
        option["min_value"] = spec.min_value
    if spec.max_value is not None:
        option["max_value"] = spec.max_value
    if spec.autocomplete:
        option["autocomplete"] = True
    return option


def build_application_command(definition: CommandDefinition) -> dict[str, Any]:
    command: dict[str, Any] = {
        "type": CHAT_INPUT,
        "name": definition.name,
        "description": definition.description,
        "dm_permission": definition.dm_permission,
    }
    if definition.options:
        command["options"] = [build_option(spec) for spec in definition.options]
    if definition.default_member_permissions is not None:
        command["default_member_permissions"] = str(
            definition.default_member_permissions
        )
    return command


def build_application_commands(registry: CommandRegistry) -> list[dict[str, Any]]:
    return [build_application_command(definition) for definition in registry]


def sync_targets(scope: str, guild_ids: tuple[str, ...]) -> list[str | None]:
    """Where a sync writes: ``[None]`` for global, else each distinct guild id."""
    normalized = scope.strip().lower()
    if normalized == "global":
        return [None]
    if normalized != "guild":
        raise ValueError(f"unknown command scope {scope!r}; use 'global' or 'guild'")
    targets = sorted({guild_id.strip() for guild_id in guild_ids} - {""})
    if not targets:
        raise ValueError("guild scope requires at least one guild_id")
    return list(targets)


async def sync_commands(
    rest: CommandSyncRest,
    *,
    application_id: str,
    commands: list[dict[str, Any]],
    scope: str,
    guild_ids: tuple[str, ...],
    logger: logging.Logger,
) -> None:
    # Resolve every target first so a bad scope never half-syncs.
    for target in sync_targets(scope, guild_ids):
        stored = await rest.bulk_overwrite_application_commands(
            application_id=application_id,
            commands=commands,
            guild_id=target,
        )
        log_event(
            logger,
            logging.INFO,
            "discord.commands.synced",
            target=target or "global",
            sent=len(commands),
            stored=len(stored),
        )
