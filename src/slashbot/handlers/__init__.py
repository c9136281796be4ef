"""Slash-command implementations, grouped by help category."""

from __future__ import annotations

from ..integrations.discord.registry import CommandRegistry
from .fun import register_fun_commands
from .images import register_image_commands
from .info import register_info_commands
from .random_content import register_random_commands
from .utility import register_utility_commands


def register_all(registry: CommandRegistry) -> CommandRegistry:
    """Register every built-in command; raises on a broken catalogue."""
    register_utility_commands(registry)
    register_fun_commands(registry)
    register_image_commands(registry)
    register_random_commands(registry)
    register_info_commands(registry)
    return registry


def build_registry() -> CommandRegistry:
    return register_all(CommandRegistry())


__all__ = ["build_registry", "register_all"]
