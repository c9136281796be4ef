from __future__ import annotations

from typing import Any, Optional

from ..integrations.discord.dispatcher import AutocompleteContext, CommandContext
from ..integrations.discord.errors import TransportError
from ..integrations.discord.interactions import UserRef
from ..integrations.discord.registry import (
    Choice,
    CommandDefinition,
    CommandRegistry,
    OptionKind,
    ParameterSpec,
)
from ..integrations.discord.rendering import avatar_url, guild_icon_url
from .common import report_failure, send_embed

CATEGORY = "Info"
COLOR_HOT_PINK = 0xFF69B4
DISCORD_EPOCH_MS = 1420070400000

VERIFICATION_LEVELS = {0: "None", 1: "Low", 2: "Medium", 3: "High", 4: "Highest"}


def snowflake_unix_seconds(snowflake: str) -> Optional[int]:
    try:
        return ((int(snowflake) >> 22) + DISCORD_EPOCH_MS) // 1000
    except ValueError:
        return None


def _user_from_payload(payload: Any, fallback: UserRef) -> UserRef:
    if not isinstance(payload, dict):
        return fallback
    return UserRef(
        id=str(payload.get("id") or fallback.id),
        username=payload.get("username") or fallback.username,
        global_name=payload.get("global_name") or fallback.global_name,
        avatar=payload.get("avatar") or fallback.avatar,
        bot=bool(payload.get("bot", fallback.bot)),
    )


async def handle_help(ctx: CommandContext) -> None:
    registry = ctx.session.registry
    command_name = ctx.options.string("command").strip().lstrip("/")
    category = ctx.options.string("category").strip()

    if command_name:
        definition = registry.get(command_name)
        if definition is None:
            await ctx.responder.respond_ephemeral("Command not found.")
            return
        fields = [("Category", definition.category, True)]
        if definition.options:
            lines = [
                f"`{spec.name}`{' (required)' if spec.required else ''} - {spec.description}"
                for spec in definition.options
            ]
            fields.append(("Options", "\n".join(lines), False))
        await send_embed(
            ctx,
            title=f"/{definition.name}",
            description=definition.description,
            fields=fields,
        )
        return

    if category:
        for name, definitions in registry.all_by_category():
            if name.lower() != category.lower():
                continue
            lines = sorted(
                f"`/{definition.name}` - {definition.description}"
                for definition in definitions
            )
            await send_embed(
                ctx,
                title=f"{name} Commands",
                description="\n".join(lines),
                footer=f"{len(definitions)} commands",
            )
            return
        await ctx.responder.respond_ephemeral("No commands found in that category.")
        return

    fields = [
        (
            name,
            " ".join(f"`/{definition.name}`" for definition in definitions),
            False,
        )
        for name, definitions in registry.all_by_category()
    ]
    await send_embed(
        ctx,
        title="Commands",
        description="Use `/help command:<name>` for details on a command.",
        fields=fields,
        footer=f"{len(registry)} commands",
    )


async def autocomplete_help(ctx: AutocompleteContext) -> None:
    registry = ctx.session.registry
    typed = ctx.focused_value.strip().lower()
    if ctx.focused == "category":
        names = registry.all_by_category().categories()
    else:
        names = [definition.name for definition in registry]
    await ctx.suggest(
        [Choice(name, name) for name in names if typed in name.lower()]
    )


async def handle_avatar(ctx: CommandContext) -> None:
    user = ctx.options.user("user") or ctx.user
    await send_embed(
        ctx,
        title=f"{user.display_name}'s Avatar",
        image_url=avatar_url(user.id, user.avatar),
    )


async def handle_userinfo(ctx: CommandContext) -> None:
    target = ctx.options.user("user") or ctx.user
    try:
        payload = await ctx.session.rest.get_user(user_id=target.id)
    except TransportError:
        # The option payload already carries enough to answer.
        payload = None
    user = _user_from_payload(payload, target)
    title = user.username or user.display_name
    if user.bot:
        title += " [BOT]"
    fields = [("ID", user.id, True)]
    if user.global_name and user.global_name != user.username:
        fields.append(("Display Name", user.global_name, True))
    created = snowflake_unix_seconds(user.id)
    if created is not None:
        fields.append(("Created", f"<t:{created}:F>\n(<t:{created}:R>)", False))
    await send_embed(
        ctx,
        title=title,
        thumbnail_url=avatar_url(user.id, user.avatar),
        color=COLOR_HOT_PINK,
        fields=fields,
    )


async def handle_serverinfo(ctx: CommandContext) -> None:
    guild_id = ctx.guild_id
    if guild_id is None:
        await ctx.responder.respond_ephemeral("This command can only be used in a server.")
        return
    try:
        guild = await ctx.session.rest.get_guild(guild_id=guild_id)
    except TransportError as exc:
        await report_failure(ctx, "Failed to fetch server info.", exc=exc)
        return

    owner_id = str(guild.get("owner_id") or "")
    fields = [
        ("ID", guild_id, True),
        ("Owner", f"<@{owner_id}>" if owner_id else "Unknown", True),
    ]
    created = snowflake_unix_seconds(guild_id)
    if created is not None:
        fields.append(("Created", f"<t:{created}:F>", True))
    members = guild.get("approximate_member_count")
    if isinstance(members, int):
        fields.append(("Members", str(members), True))
    fields.append(("Roles", str(len(guild.get("roles") or [])), True))
    fields.append(("Emojis", str(len(guild.get("emojis") or [])), True))
    fields.append(
        (
            "Verification",
            VERIFICATION_LEVELS.get(guild.get("verification_level"), "Unknown"),
            True,
        )
    )
    boosts = guild.get("premium_subscription_count")
    if isinstance(boosts, int):
        fields.append(("Boosts", f"{boosts} (Tier {guild.get('premium_tier', 0)})", True))
    await send_embed(
        ctx,
        title=str(guild.get("name") or "Server"),
        thumbnail_url=guild_icon_url(guild_id, guild.get("icon")),
        fields=fields,
    )


def register_info_commands(registry: CommandRegistry) -> None:
    registry.register(
        CommandDefinition(
            name="help",
            description="Show available commands",
            handler=handle_help,
            category=CATEGORY,
            options=(
                ParameterSpec("command", "Show help for one command", autocomplete=True),
                ParameterSpec("category", "List one category", autocomplete=True),
            ),
            autocomplete=autocomplete_help,
        )
    )
    registry.register(
        CommandDefinition(
            name="avatar",
            description="Get a user's avatar",
            handler=handle_avatar,
            category=CATEGORY,
            options=(
                ParameterSpec("user", "The user", kind=OptionKind.USER),
            ),
        )
    )
    registry.register(
        CommandDefinition(
            name="userinfo",
            description="Show information about a user",
            handler=handle_userinfo,
            category=CATEGORY,
            options=(
                ParameterSpec("user", "The user", kind=OptionKind.USER),
            ),
        )
    )
    registry.register(
        CommandDefinition(
            name="serverinfo",
            description="Show information about this server",
            handler=handle_serverinfo,
            category=CATEGORY,
            dm_permission=False,
        )
    )
