from __future__ import annotations

import random
import re

from ..integrations.discord.dispatcher import CommandContext
from ..integrations.discord.registry import (
    Choice,
    CommandDefinition,
    CommandRegistry,
    OptionKind,
    ParameterSpec,
)
from .common import report_failure, send_embed

CATEGORY = "Fun"
COLOR_GOLD = 0xF1C40F

EIGHT_BALL_ANSWERS = (
    "It is certain.",
    "It is decidedly so.",
    "Without a doubt.",
    "Yes definitely.",
    "You may rely on it.",
    "As I see it, yes.",
    "Most likely.",
    "Outlook good.",
    "Yes.",
    "Signs point to yes.",
    "Reply hazy, try again.",
    "Ask again later.",
    "Better not tell you now.",
    "Cannot predict now.",
    "Concentrate and ask again.",
    "Don't count on it.",
    "My reply is no.",
    "My sources say no.",
    "Outlook not so good.",
    "Very doubtful.",
)

RPS_CHOICES = ("rock", "paper", "scissors")
RPS_BEATS = {"rock": "scissors", "paper": "rock", "scissors": "paper"}
RPS_EMOJI = {"rock": "rock", "paper": "page_facing_up", "scissors": "scissors"}

_OR_SPLIT_RE = re.compile(r"\s+or\s+", re.IGNORECASE)


def rps_outcome(player: str, bot: str) -> str:
    if player == bot:
        return "It's a tie!"
    if RPS_BEATS.get(player) == bot:
        return "You win!"
    return "I win!"


def split_choices(text: str) -> list[str]:
    """Split on `` or `` when present, else on commas."""
    parts = _OR_SPLIT_RE.split(text) if _OR_SPLIT_RE.search(text) else text.split(",")
    return [part.strip() for part in parts if part.strip()]


def rating_label(rating: int) -> str:
    if rating <= 2:
        return "terrible"
    if rating <= 4:
        return "bad"
    if rating <= 6:
        return "meh"
    if rating <= 8:
        return "good"
    return "excellent"


async def handle_eight_ball(ctx: CommandContext) -> None:
    question = ctx.options.string("question")
    await send_embed(
        ctx,
        title="Magic 8-Ball",
        fields=[
            ("Question", question, False),
            ("Answer", random.choice(EIGHT_BALL_ANSWERS), False),
        ],
    )


async def handle_coinflip(ctx: CommandContext) -> None:
    result = random.choice(("Heads", "Tails"))
    await send_embed(
        ctx,
        title="Coin Flip",
        description=f"The coin landed on **{result}**!",
        color=COLOR_GOLD,
    )


async def handle_dice(ctx: CommandContext) -> None:
    sides = ctx.options.integer("sides") or 6
    count = ctx.options.integer("count") or 1
    rolls = [random.randint(1, sides) for _ in range(count)]
    description = ", ".join(str(roll) for roll in rolls)
    if count > 1:
        description += f"\n**Total:** {sum(rolls)}"
    await send_embed(ctx, title=f"Rolling {count}d{sides}", description=description)


async def handle_rps(ctx: CommandContext) -> None:
    player = ctx.options.string("choice")
    bot = random.choice(RPS_CHOICES)
    await send_embed(
        ctx,
        title="Rock Paper Scissors",
        fields=[
            ("You chose", f":{RPS_EMOJI.get(player, player)}: {player.title()}", True),
            ("I chose", f":{RPS_EMOJI[bot]}: {bot.title()}", True),
            ("Result", rps_outcome(player, bot), False),
        ],
    )


async def handle_random_number(ctx: CommandContext) -> None:
    low = ctx.options.integer("min")
    high = ctx.options.integer("max") if ctx.options.has("max") else 100
    if low >= high:
        await ctx.responder.respond_ephemeral("Min must be less than max.")
        return
    await send_embed(
        ctx,
        title="Random Number",
        description=f"**{random.randint(low, high)}**\n(between {low} and {high})",
    )


async def handle_choose(ctx: CommandContext) -> None:
    options = split_choices(ctx.options.string("options"))
    if len(options) < 2:
        await report_failure(
            ctx, "Please provide at least 2 options separated by commas or 'or'."
        )
        return
    await send_embed(
        ctx,
        title="I choose...",
        description=f"**{random.choice(options)}**",
        footer=f"From {len(options)} options",
    )


async def handle_rate(ctx: CommandContext) -> None:
    thing = ctx.options.string("thing")
    rating = random.randint(0, 10)
    await send_embed(
        ctx,
        title=f"Rating: {thing}",
        description=f"I rate **{thing}** a **{rating}/10** ({rating_label(rating)})",
    )


def register_fun_commands(registry: CommandRegistry) -> None:
    registry.register(
        CommandDefinition(
            name="8ball",
            description="Ask the magic 8-ball a question",
            handler=handle_eight_ball,
            category=CATEGORY,
            options=(
                ParameterSpec("question", "Your question", required=True),
            ),
        )
    )
    registry.register(
        CommandDefinition(
            name="coinflip",
            description="Flip a coin",
            handler=handle_coinflip,
            category=CATEGORY,
        )
    )
    registry.register(
        CommandDefinition(
            name="dice",
            description="Roll a dice",
            handler=handle_dice,
            category=CATEGORY,
            options=(
                ParameterSpec(
                    "sides",
                    "Number of sides (default: 6)",
                    kind=OptionKind.INTEGER,
                    min_value=2,
                    max_value=100,
                ),
                ParameterSpec(
                    "count",
                    "Number of dice to roll (default: 1)",
                    kind=OptionKind.INTEGER,
                    min_value=1,
                    max_value=10,
                ),
            ),
        )
    )
    registry.register(
        CommandDefinition(
            name="rps",
            description="Rock, Paper, Scissors",
            handler=handle_rps,
            category=CATEGORY,
            options=(
                ParameterSpec(
                    "choice",
                    "Your choice",
                    required=True,
                    choices=tuple(Choice(value.title(), value) for value in RPS_CHOICES),
                ),
            ),
        )
    )
    registry.register(
        CommandDefinition(
            name="random",
            description="Generate a random number",
            handler=handle_random_number,
            category=CATEGORY,
            options=(
                ParameterSpec("min", "Minimum number", kind=OptionKind.INTEGER),
                ParameterSpec("max", "Maximum number", kind=OptionKind.INTEGER),
            ),
        )
    )
    registry.register(
        CommandDefinition(
            name="choose",
            description="Choose between options",
            handler=handle_choose,
            category=CATEGORY,
            options=(
                ParameterSpec(
                    "options", "Options separated by commas or 'or'", required=True
                ),
            ),
        )
    )
    registry.register(
        CommandDefinition(
            name="rate",
            description="Rate something out of 10",
            handler=handle_rate,
            category=CATEGORY,
            options=(ParameterSpec("thing", "What to rate", required=True),),
        )
    )
