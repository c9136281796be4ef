from __future__ import annotations

import random

from ..integrations.discord.dispatcher import CommandContext
from ..integrations.discord.registry import (
    Choice,
    CommandDefinition,
    CommandRegistry,
    ParameterSpec,
)
from .common import report_failure, require_providers, send_embed
from .providers import ProviderError, TriviaQuestion

CATEGORY = "Random"
COLOR_YELLOW = 0xFEE75C

TRIVIA_CATEGORIES = (
    Choice("General Knowledge", "9"),
    Choice("Books", "10"),
    Choice("Film", "11"),
    Choice("Music", "12"),
    Choice("Video Games", "15"),
    Choice("Science & Nature", "17"),
    Choice("Computers", "18"),
    Choice("Mathematics", "19"),
    Choice("Sports", "21"),
    Choice("Geography", "22"),
    Choice("History", "23"),
    Choice("Art", "25"),
    Choice("Animals", "27"),
    Choice("Vehicles", "28"),
)
TRIVIA_DIFFICULTIES = (
    Choice("Easy", "easy"),
    Choice("Medium", "medium"),
    Choice("Hard", "hard"),
)
ANSWER_LETTERS = "ABCDEFGH"


def format_trivia(question: TriviaQuestion, *, rng: random.Random | None = None) -> str:
    answers = [*question.incorrect_answers, question.correct_answer]
    (rng or random).shuffle(answers)
    return "\n".join(
        f"**{letter}.** {answer}" for letter, answer in zip(ANSWER_LETTERS, answers)
    )


async def handle_joke(ctx: CommandContext) -> None:
    await ctx.responder.defer()
    try:
        joke = await require_providers(ctx).joke()
    except ProviderError as exc:
        await report_failure(ctx, "Failed to fetch joke.", exc=exc)
        return
    await send_embed(
        ctx, title=joke.setup, description=f"||{joke.punchline}||", color=COLOR_YELLOW
    )


async def handle_fact(ctx: CommandContext) -> None:
    await ctx.responder.defer()
    try:
        fact = await require_providers(ctx).useless_fact()
    except ProviderError as exc:
        await report_failure(ctx, "Failed to fetch fact.", exc=exc)
        return
    await send_embed(ctx, title="Random Fact", description=fact)


async def handle_advice(ctx: CommandContext) -> None:
    await ctx.responder.defer()
    try:
        advice = await require_providers(ctx).advice()
    except ProviderError as exc:
        await report_failure(ctx, "Failed to fetch advice.", exc=exc)
        return
    await send_embed(ctx, title="Random Advice", description=f'"{advice}"')


async def handle_trivia(ctx: CommandContext) -> None:
    category = ctx.options.string("category")
    difficulty = ctx.options.string("difficulty")
    await ctx.responder.defer()
    try:
        question = await require_providers(ctx).trivia(
            category=category, difficulty=difficulty
        )
    except ProviderError as exc:
        await report_failure(ctx, "Failed to fetch trivia.", exc=exc)
        return
    await send_embed(
        ctx,
        title=question.question,
        description=format_trivia(question),
        fields=[
            ("Category", question.category, True),
            ("Difficulty", question.difficulty.title(), True),
        ],
        footer=f"Answer: {question.correct_answer}",
    )


def register_random_commands(registry: CommandRegistry) -> None:
    registry.register(
        CommandDefinition(
            name="joke",
            description="Get a random joke",
            handler=handle_joke,
            category=CATEGORY,
        )
    )
    registry.register(
        CommandDefinition(
            name="fact",
            description="Get a random useless fact",
            handler=handle_fact,
            category=CATEGORY,
        )
    )
    registry.register(
        CommandDefinition(
            name="advice",
            description="Get a random piece of advice",
            handler=handle_advice,
            category=CATEGORY,
        )
    )
    registry.register(
        CommandDefinition(
            name="trivia",
            description="Get a random trivia question",
            handler=handle_trivia,
            category=CATEGORY,
            options=(
                ParameterSpec("category", "Trivia category", choices=TRIVIA_CATEGORIES),
                ParameterSpec(
                    "difficulty", "Question difficulty", choices=TRIVIA_DIFFICULTIES
                ),
            ),
        )
    )
