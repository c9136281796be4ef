from __future__ import annotations

import ast
import math
import operator
import re
import sqlite3
import time
from datetime import timedelta
from typing import Any, Callable, Union

from ..core.sqlite_utils import utc_now
from ..integrations.discord.constants import COLOR_GREEN
from ..integrations.discord.dispatcher import CommandContext
from ..integrations.discord.registry import (
    CommandDefinition,
    CommandRegistry,
    OptionKind,
    ParameterSpec,
)
from ..integrations.discord.rendering import format_relative_timestamp
from .common import report_failure, require_store, send_embed

CATEGORY = "Utility"
MANAGE_MESSAGES_PERMISSION = str(1 << 13)
MAX_DURATION = timedelta(days=365)
MAX_EXPONENT = 1000
MAX_EXPRESSION_LENGTH = 200
MAX_RESULT_BITS = 4096

Number = Union[int, float]

_DURATION_UNITS = {
    "s": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
    "w": timedelta(weeks=1),
}
_DURATION_RE = re.compile(r"(?:\s*\d+\s*[smhdw])+\s*")
_DURATION_PART_RE = re.compile(r"(\d+)\s*([smhdw])")


class CalcError(ValueError):
    pass


def parse_duration(text: str) -> timedelta:
    """Parse ``1h30m``, ``2d``, ``1w 3d`` style durations.

    Raises ``ValueError`` for anything else, for zero and for durations over
    a year.
    """
    normalized = (text or "").strip().lower()
    if not normalized or not _DURATION_RE.fullmatch(normalized):
        raise ValueError(f"invalid duration: {text!r}")
    total = timedelta()
    for amount, unit in _DURATION_PART_RE.findall(normalized):
        if int(amount) > 100_000:
            raise ValueError("duration is too long")
        total += int(amount) * _DURATION_UNITS[unit]
    if total <= timedelta():
        raise ValueError("duration must be positive")
    if total > MAX_DURATION:
        raise ValueError("duration is too long")
    return total


def _power(base: Number, exponent: Number) -> Number:
    if abs(exponent) > MAX_EXPONENT:
        raise CalcError("exponent is too large")
    if isinstance(base, int) and base.bit_length() * abs(exponent) > MAX_RESULT_BITS:
        raise CalcError("result is too large")
    return base**exponent


def _divide(left: Number, right: Number) -> Number:
    if right == 0:
        raise CalcError("division by zero")
    return left / right


def _modulo(left: Number, right: Number) -> Number:
    if right == 0:
        raise CalcError("division by zero")
    return left % right


_BINARY_OPERATORS: dict[type, Callable[[Number, Number], Number]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: _divide,
    ast.FloorDiv: lambda left, right: _divide(left, right) // 1,
    ast.Mod: _modulo,
    ast.Pow: _power,
    # Users write 2^8 meaning exponentiation.
    ast.BitXor: _power,
}
_UNARY_OPERATORS: dict[type, Callable[[Number], Number]] = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}


def _checked(value: Number) -> Number:
    # Every intermediate is bounded, so chains of allowed powers stay small.
    if isinstance(value, complex):
        raise CalcError("result is not a real number")
    if isinstance(value, int) and value.bit_length() > MAX_RESULT_BITS:
        raise CalcError("result is too large")
    return value


def _evaluate_node(node: ast.AST) -> Number:
    if isinstance(node, ast.Expression):
        return _evaluate_node(node.body)
    if isinstance(node, ast.Constant) and type(node.value) in (int, float):
        return node.value
    if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPERATORS:
        return _checked(
            _BINARY_OPERATORS[type(node.op)](
                _evaluate_node(node.left), _evaluate_node(node.right)
            )
        )
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPERATORS:
        return _checked(_UNARY_OPERATORS[type(node.op)](_evaluate_node(node.operand)))
    raise CalcError("only numbers, + - * / % ^ and parentheses are supported")


def _format_number(result: Number) -> str:
    if isinstance(result, float):
        if math.isnan(result) or math.isinf(result):
            raise CalcError("result is out of range")
        if result.is_integer():
            return str(int(result))
        return f"{result:.4f}".rstrip("0").rstrip(".")
    return str(result)


def evaluate_expression(expression: str) -> str:
    """Evaluate a small arithmetic expression and format the result."""
    text = (expression or "").strip()
    if not text:
        raise CalcError("expression is empty")
    if len(text) > MAX_EXPRESSION_LENGTH:
        raise CalcError("expression is too long")
    try:
        tree = ast.parse(text, mode="eval")
    except SyntaxError as exc:
        raise CalcError("could not parse expression") from exc
    try:
        return _format_number(_evaluate_node(tree))
    except CalcError:
        raise
    except (OverflowError, TypeError, ValueError, ZeroDivisionError) as exc:
        raise CalcError("result is out of range") from exc


async def handle_ping(ctx: CommandContext) -> None:
    started = time.monotonic()
    await ctx.responder.defer()
    latency_ms = int((time.monotonic() - started) * 1000)
    await send_embed(
        ctx,
        title="Pong!",
        fields=[("API Latency", f"{latency_ms}ms", True)],
    )


async def handle_calc(ctx: CommandContext) -> None:
    expression = ctx.options.string("expression")
    try:
        result = evaluate_expression(expression)
    except CalcError as exc:
        await ctx.responder.respond_ephemeral(f"Invalid expression: {exc}")
        return
    await send_embed(
        ctx,
        title="Math Result",
        fields=[
            ("Expression", f"`{expression}`", True),
            ("Result", f"`{result}`", True),
        ],
    )


async def handle_remind(ctx: CommandContext) -> None:
    message = ctx.options.string("message")
    try:
        delay = parse_duration(ctx.options.string("time"))
    except ValueError:
        await ctx.responder.respond_ephemeral(
            "Invalid time format. Use format like: 1h30m, 2d, 30m"
        )
        return
    if ctx.channel_id is None:
        await ctx.responder.respond_ephemeral("Reminders need a channel to post in.")
        return
    remind_at = utc_now() + delay
    try:
        await require_store(ctx).add_reminder(
            user_id=ctx.user.id,
            channel_id=ctx.channel_id,
            message=message,
            remind_at=remind_at,
        )
    except sqlite3.Error as exc:
        await report_failure(ctx, "Failed to set reminder.", exc=exc)
        return
    await send_embed(
        ctx,
        title="Reminder Set",
        description=(
            f"I'll remind you {format_relative_timestamp(remind_at)}\n"
            f"**Message:** {message}"
        ),
        color=COLOR_GREEN,
    )


async def handle_reminders(ctx: CommandContext) -> None:
    try:
        reminders = await require_store(ctx).list_reminders(user_id=ctx.user.id)
    except sqlite3.Error as exc:
        await report_failure(ctx, "Failed to load reminders.", exc=exc)
        return
    if not reminders:
        await ctx.responder.respond_ephemeral("You have no pending reminders.")
        return
    lines = [
        f"{format_relative_timestamp(reminder.remind_at)} - {reminder.message}"
        for reminder in reminders[:15]
    ]
    await send_embed(
        ctx,
        ephemeral=True,
        title="Your Reminders",
        description="\n".join(lines),
        footer=f"{len(reminders)} pending",
    )


async def handle_afk(ctx: CommandContext) -> None:
    message = ctx.options.string("message").strip() or "AFK"
    try:
        await require_store(ctx).set_afk(user_id=ctx.user.id, message=message)
    except sqlite3.Error as exc:
        await report_failure(ctx, "Failed to set AFK status.", exc=exc)
        return
    await ctx.responder.respond(f"You are now AFK: {message}")


async def handle_snipe(ctx: CommandContext) -> None:
    amount = ctx.options.integer("amount") or 1
    if ctx.channel_id is None:
        await ctx.responder.respond_ephemeral("No deleted messages found in this channel.")
        return
    try:
        messages = await require_store(ctx).recent_deleted_messages(
            channel_id=ctx.channel_id, limit=amount
        )
    except sqlite3.Error as exc:
        await report_failure(ctx, "Failed to load deleted messages.", exc=exc)
        return
    if not messages:
        await ctx.responder.respond_ephemeral("No deleted messages found in this channel.")
        return
    fields: list[tuple[str, str, bool]] = [
        (
            f"{message.author_name} - {format_relative_timestamp(message.deleted_at)}",
            message.content or "*(no text content)*",
            False,
        )
        for message in messages
    ]
    await send_embed(ctx, ephemeral=True, title="Sniped Messages", fields=fields)


async def handle_schedule(ctx: CommandContext) -> None:
    message = ctx.options.string("message")
    channel = ctx.options.channel("channel")
    channel_id = channel.id if channel is not None else ctx.channel_id
    try:
        delay = parse_duration(ctx.options.string("time"))
    except ValueError:
        await ctx.responder.respond_ephemeral(
            "Invalid time format. Use format like: 1h30m, 2d, 30m"
        )
        return
    if channel_id is None:
        await ctx.responder.respond_ephemeral("Pick a channel to send the message in.")
        return
    send_at = utc_now() + delay
    try:
        await require_store(ctx).add_scheduled_message(
            guild_id=ctx.guild_id,
            channel_id=channel_id,
            user_id=ctx.user.id,
            message=message,
            send_at=send_at,
        )
    except sqlite3.Error as exc:
        await report_failure(ctx, "Failed to schedule message.", exc=exc)
        return
    await send_embed(
        ctx,
        ephemeral=True,
        title="Message Scheduled",
        description=(
            f"Message will be sent in <#{channel_id}> "
            f"{format_relative_timestamp(send_at)}"
        ),
        color=COLOR_GREEN,
    )


def register_utility_commands(registry: CommandRegistry) -> None:
    definitions: list[dict[str, Any]] = [
        dict(name="ping", description="Check bot latency", handler=handle_ping),
        dict(
            name="calc",
            description="Evaluate a math expression",
            handler=handle_calc,
            options=(
                ParameterSpec(
                    "expression", "Expression such as (2 + 3) * 4 ^ 2", required=True
                ),
            ),
        ),
        dict(
            name="remind",
            description="Set a reminder",
            handler=handle_remind,
            options=(
                ParameterSpec("time", "When to remind (e.g., 1h30m, 2d)", required=True),
                ParameterSpec("message", "What to remind you about", required=True),
            ),
        ),
        dict(
            name="reminders",
            description="List your pending reminders",
            handler=handle_reminders,
        ),
        dict(
            name="afk",
            description="Set your AFK status",
            handler=handle_afk,
            options=(ParameterSpec("message", "Your AFK message"),),
        ),
        dict(
            name="snipe",
            description="Retrieve recently deleted messages",
            handler=handle_snipe,
            options=(
                ParameterSpec(
                    "amount",
                    "Number of messages to retrieve (1-15)",
                    kind=OptionKind.INTEGER,
                    min_value=1,
                    max_value=15,
                ),
            ),
        ),
        dict(
            name="schedule",
            description="Schedule a message",
            handler=handle_schedule,
            options=(
                ParameterSpec("time", "When to send (e.g., 1h30m, 2d)", required=True),
                ParameterSpec("message", "Message to send", required=True),
                ParameterSpec(
                    "channel",
                    "Channel to send in (default: this one)",
                    kind=OptionKind.CHANNEL,
                ),
            ),
            default_member_permissions=MANAGE_MESSAGES_PERMISSION,
            dm_permission=False,
        ),
    ]
    for fields in definitions:
        registry.register(CommandDefinition(category=CATEGORY, **fields))
