from __future__ import annotations

from ..integrations.discord.dispatcher import CommandContext
from ..integrations.discord.registry import (
    Choice,
    CommandDefinition,
    CommandRegistry,
    ParameterSpec,
)
from .common import report_failure, require_providers, send_embed
from .providers import ANIMAL_TYPES, ProviderError

CATEGORY = "Images"
COLOR_PINK = 0xFFB6C1
COLOR_BROWN = 0x8B4513
COLOR_REDDIT = 0xFF4500


async def handle_animal(ctx: CommandContext) -> None:
    animal = ctx.options.string("type")
    await ctx.responder.defer()
    try:
        image_url = await require_providers(ctx).animal_image(animal)
    except ProviderError as exc:
        await report_failure(ctx, "Failed to fetch image.", exc=exc)
        return
    await send_embed(
        ctx,
        title=f"Random {animal.replace('_', ' ')}",
        image_url=image_url,
    )


async def handle_cat_fact(ctx: CommandContext) -> None:
    providers = require_providers(ctx)
    await ctx.responder.defer()
    try:
        fact = await providers.cat_fact()
    except ProviderError as exc:
        await report_failure(ctx, "Failed to fetch cat fact.", exc=exc)
        return
    # The picture is decoration; the fact alone is still a useful answer.
    try:
        thumbnail = await providers.cat_image()
    except ProviderError:
        thumbnail = None
    await send_embed(
        ctx, title="Cat Fact", description=fact, color=COLOR_PINK, thumbnail_url=thumbnail
    )


async def handle_dog_fact(ctx: CommandContext) -> None:
    providers = require_providers(ctx)
    await ctx.responder.defer()
    try:
        fact = await providers.dog_fact()
    except ProviderError as exc:
        await report_failure(ctx, "Failed to fetch dog fact.", exc=exc)
        return
    try:
        thumbnail = await providers.dog_image()
    except ProviderError:
        thumbnail = None
    await send_embed(
        ctx, title="Dog Fact", description=fact, color=COLOR_BROWN, thumbnail_url=thumbnail
    )


async def handle_meme(ctx: CommandContext) -> None:
    await ctx.responder.defer()
    try:
        meme = await require_providers(ctx).meme()
    except ProviderError as exc:
        await report_failure(ctx, "Failed to fetch meme.", exc=exc)
        return
    await send_embed(
        ctx,
        title=meme.title,
        url=meme.post_link or None,
        image_url=meme.url,
        color=COLOR_REDDIT,
        footer=f"r/{meme.subreddit} | u/{meme.author} | {meme.ups} upvotes",
    )


def register_image_commands(registry: CommandRegistry) -> None:
    registry.register(
        CommandDefinition(
            name="animal",
            description="Get a random animal image",
            handler=handle_animal,
            category=CATEGORY,
            options=(
                ParameterSpec(
                    "type",
                    "Type of animal",
                    required=True,
                    choices=tuple(
                        Choice(animal.replace("_", " ").title(), animal)
                        for animal in ANIMAL_TYPES
                    ),
                ),
            ),
        )
    )
    registry.register(
        CommandDefinition(
            name="catfact",
            description="Get a random cat fact",
            handler=handle_cat_fact,
            category=CATEGORY,
        )
    )
    registry.register(
        CommandDefinition(
            name="dogfact",
            description="Get a random dog fact",
            handler=handle_dog_fact,
            category=CATEGORY,
        )
    )
    registry.register(
        CommandDefinition(
            name="meme",
            description="Get a random meme from Reddit",
            handler=handle_meme,
            category=CATEGORY,
        )
    )
