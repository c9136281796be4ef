from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Optional

from ..core.logging_utils import log_event
from ..integrations.discord.dispatcher import CommandContext
from ..integrations.discord.errors import TransportError
from ..integrations.discord.rendering import build_embed
from ..integrations.discord.responder import ResponderState

if TYPE_CHECKING:
    from ..core.store import BotStore
    from .providers import ProviderClient


async def send_embed(ctx: CommandContext, *, ephemeral: bool = False, **embed: Any) -> None:
    await ctx.responder.send(embeds=[build_embed(**embed)], ephemeral=ephemeral)


async def report_failure(
    ctx: CommandContext,
    message: str,
    *,
    exc: Optional[BaseException] = None,
) -> None:
    """Tell the invoker something went wrong, without raising.

    Picks whichever responder operation the current state allows, so the
    interaction is never left silent.
    """
    if exc is not None:
        log_event(
            ctx.session.logger,
            logging.WARNING,
            "handler.failed",
            command=ctx.event.command_name,
            interaction_id=ctx.event.interaction_id,
            exc=exc,
        )
    try:
        if ctx.responder.state is ResponderState.UNACKNOWLEDGED:
            await ctx.responder.respond_ephemeral(message)
        elif (
            ctx.responder.state is ResponderState.DEFERRED
            and ctx.responder.edit_count == 0
        ):
            await ctx.responder.edit_response(message)
        else:
            await ctx.responder.follow_up(message, ephemeral=True)
    except TransportError as delivery_exc:
        log_event(
            ctx.session.logger,
            logging.WARNING,
            "handler.failure_notice.undelivered",
            command=ctx.event.command_name,
            interaction_id=ctx.event.interaction_id,
            exc=delivery_exc,
        )


def require_providers(ctx: CommandContext) -> "ProviderClient":
    providers = ctx.session.providers
    if providers is None:
        raise RuntimeError("handler needs a ProviderClient but the session has none")
    return providers


def require_store(ctx: CommandContext) -> "BotStore":
    store = ctx.session.store
    if store is None:
        raise RuntimeError("handler needs a BotStore but the session has none")
    return store
