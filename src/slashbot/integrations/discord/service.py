from __future__ import annotations

import asyncio
import contextlib
import logging
import sqlite3
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

from ...core.config import BotConfig
from ...core.exceptions import TransientError
from ...core.logging_utils import log_event
from ...core.retry import retry_transient
from ...core.sqlite_utils import utc_now
from ...core.store import BotStore, DeletedMessage
from ...handlers import build_registry
from ...handlers.providers import ProviderClient
from .commands import build_application_commands, sync_commands
from .config import DiscordBotConfig
from .dispatcher import InteractionDispatcher, SessionContext
from .errors import TransportError
from .gateway import DiscordGatewayClient
from .interactions import parse_interaction_event
from .registry import CommandRegistry
from .rendering import format_relative_timestamp, truncate_for_discord
from .rest import DiscordRestClient

RECENT_MESSAGE_CACHE_SIZE = 2000
HISTORY_PRUNE_INTERVAL_SECONDS = 60 * 60
SHUTDOWN_GRACE_SECONDS = 30.0
COMMAND_SYNC_ATTEMPTS = 3


@dataclass(frozen=True)
class CachedMessage:
    channel_id: str
    author_id: str
    author_name: str
    content: str


class RecentMessageCache:
    """Bounded LRU of recent message bodies.

    MESSAGE_DELETE only carries ids, so the text has to be remembered from
    MESSAGE_CREATE to support ``/snipe``.
    """

    def __init__(self, capacity: int = RECENT_MESSAGE_CACHE_SIZE) -> None:
        self._capacity = capacity
        self._messages: OrderedDict[str, CachedMessage] = OrderedDict()

    def remember(self, message_id: str, message: CachedMessage) -> None:
        self._messages[message_id] = message
        self._messages.move_to_end(message_id)
        while len(self._messages) > self._capacity:
            self._messages.popitem(last=False)

    def pop(self, message_id: str) -> Optional[CachedMessage]:
        return self._messages.pop(message_id, None)

    def __len__(self) -> int:
        return len(self._messages)


class DiscordBotService:
    def __init__(
        self,
        config: DiscordBotConfig,
        *,
        logger: logging.Logger,
        bot_config: Optional[BotConfig] = None,
        registry: Optional[CommandRegistry] = None,
        rest_client: Optional[DiscordRestClient] = None,
        gateway_client: Optional[DiscordGatewayClient] = None,
        store: Optional[BotStore] = None,
        providers: Optional[ProviderClient] = None,
        command_sync_attempts: int = COMMAND_SYNC_ATTEMPTS,
    ) -> None:
        self._config = config
        self._command_sync_attempts = command_sync_attempts
        self._bot_config = bot_config
        self._logger = logger
        self._registry = registry if registry is not None else build_registry()

        self._rest = (
            rest_client
            if rest_client is not None
            else DiscordRestClient(
                bot_token=config.bot_token or "",
                timeout_seconds=config.rest_timeout_seconds,
            )
        )
        self._owns_rest = rest_client is None

        self._gateway = (
            gateway_client
            if gateway_client is not None
            else DiscordGatewayClient(
                bot_token=config.bot_token or "",
                intents=config.intents,
                logger=logger,
            )
        )
        self._owns_gateway = gateway_client is None

        self._store = store if store is not None else BotStore(config.state_file)
        self._owns_store = store is None

        if providers is None:
            providers_config = bot_config.providers if bot_config is not None else None
            providers = ProviderClient(
                timeout_seconds=(
                    providers_config.timeout_seconds if providers_config else 10.0
                ),
                user_agent=providers_config.user_agent if providers_config else "slashbot",
                logger=logger,
            )
            self._owns_providers = True
        else:
            self._owns_providers = False
        self._providers = providers

        self._session = SessionContext(
            rest=self._rest,
            registry=self._registry,
            application_id=config.application_id or "",
            store=self._store,
            providers=self._providers,
            config=bot_config,
            max_message_length=config.max_message_length,
            logger=logger,
        )
        self._dispatcher = InteractionDispatcher(
            self._registry, self._session, logger=logger
        )
        self._recent_messages = RecentMessageCache()
        self._last_history_prune: Optional[datetime] = None

    @property
    def registry(self) -> CommandRegistry:
        return self._registry

    @property
    def dispatcher(self) -> InteractionDispatcher:
        return self._dispatcher

    @property
    def poll_interval_seconds(self) -> float:
        if self._bot_config is None:
            return 10.0
        return self._bot_config.scheduler.poll_interval_seconds

    @property
    def history_retention(self) -> timedelta:
        if self._bot_config is None:
            return timedelta(hours=24)
        return timedelta(
            seconds=self._bot_config.scheduler.deleted_message_retention_seconds
        )

    async def run_forever(self) -> None:
        scheduler_task: Optional[asyncio.Task[None]] = None
        try:
            await self._store.initialize()
            await self._sync_application_commands_on_startup()
            # Nothing may register once interactions can arrive.
            self._registry.seal()
            scheduler_task = asyncio.create_task(self._run_scheduler_loop())
            log_event(
                self._logger,
                logging.INFO,
                "discord.bot.starting",
                state_file=str(self._config.state_file),
                command_count=len(self._registry),
            )
            await self._gateway.run(self._on_dispatch)
        finally:
            await self._dispatcher.shutdown(timeout=SHUTDOWN_GRACE_SECONDS)
            if scheduler_task is not None:
                scheduler_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await scheduler_task
            await self._shutdown()

    async def stop(self) -> None:
        await self._gateway.stop()

    async def _sync_application_commands_on_startup(self) -> None:
        registration = self._config.command_registration
        if not registration.enabled:
            log_event(self._logger, logging.INFO, "discord.commands.sync.disabled")
            return

        application_id = (self._config.application_id or "").strip()
        if not application_id:
            raise ValueError("missing Discord application id for command sync")
        if registration.scope == "guild" and not registration.guild_ids:
            raise ValueError("guild scope requires at least one guild_id")

        commands = build_application_commands(self._registry)
        sync = retry_transient(
            max_attempts=self._command_sync_attempts, base_wait=1.0, max_wait=10.0
        )(sync_commands)
        try:
            await sync(
                self._rest,
                application_id=application_id,
                commands=commands,
                scope=registration.scope,
                guild_ids=registration.guild_ids,
                logger=self._logger,
            )
        except TransportError as exc:
            # A stale platform catalogue is survivable; dispatch drops unknown names.
            log_event(
                self._logger,
                logging.WARNING,
                "discord.commands.sync.startup_failed",
                scope=registration.scope,
                command_count=len(commands),
                exc=exc,
            )

    async def _shutdown(self) -> None:
        if self._owns_gateway:
            with contextlib.suppress(Exception):
                await self._gateway.stop()
        if self._owns_rest:
            with contextlib.suppress(Exception):
                await self._rest.close()
        if self._owns_providers:
            with contextlib.suppress(Exception):
                await self._providers.close()
        if self._owns_store:
            with contextlib.suppress(Exception):
                await self._store.close()
        log_event(self._logger, logging.INFO, "discord.bot.stopped")

    async def _on_dispatch(self, event_type: str, payload: dict[str, Any]) -> None:
        if event_type == "INTERACTION_CREATE":
            self._handle_interaction(payload)
        elif event_type == "MESSAGE_CREATE":
            await self._handle_message_create(payload)
        elif event_type == "MESSAGE_DELETE":
            await self._handle_message_delete(payload)
        elif event_type == "READY":
            user = payload.get("user")
            log_event(
                self._logger,
                logging.INFO,
                "discord.bot.ready",
                user_id=user.get("id") if isinstance(user, dict) else None,
                guild_count=len(payload.get("guilds") or []),
            )

    def _handle_interaction(self, interaction_payload: dict[str, Any]) -> None:
        event = parse_interaction_event(interaction_payload)
        if event is None:
            log_event(
                self._logger,
                logging.DEBUG,
                "discord.interaction.ignored",
                interaction_type=interaction_payload.get("type"),
            )
            return
        # Gateway reads must not wait on handlers.
        self._dispatcher.submit(event)

    async def _handle_message_create(self, payload: dict[str, Any]) -> None:
        author = payload.get("author")
        if not isinstance(author, dict) or author.get("bot"):
            return
        message_id = payload.get("id")
        channel_id = payload.get("channel_id")
        author_id = author.get("id")
        if not isinstance(channel_id, str) or not isinstance(author_id, str):
            return
        if isinstance(message_id, str):
            self._recent_messages.remember(
                message_id,
                CachedMessage(
                    channel_id=channel_id,
                    author_id=author_id,
                    author_name=str(author.get("username") or author_id),
                    content=str(payload.get("content") or ""),
                ),
            )
        try:
            await self._check_afk_mentions(payload, channel_id)
            await self._check_afk_return(author_id, channel_id, message_id)
        except (sqlite3.Error, TransportError) as exc:
            log_event(
                self._logger,
                logging.WARNING,
                "discord.afk.check_failed",
                channel_id=channel_id,
                user_id=author_id,
                exc=exc,
            )

    async def _check_afk_mentions(self, payload: dict[str, Any], channel_id: str) -> None:
        mentions = payload.get("mentions")
        if not isinstance(mentions, list):
            return
        for mention in mentions:
            if not isinstance(mention, dict) or not isinstance(mention.get("id"), str):
                continue
            afk = await self._store.get_afk(user_id=mention["id"])
            if afk is None:
                continue
            name = str(mention.get("username") or mention["id"])
            await self._send_channel_message(
                channel_id,
                {
                    "content": truncate_for_discord(
                        f"{name} is AFK: {afk.message} "
                        f"(since {format_relative_timestamp(afk.since)})",
                        self._config.max_message_length,
                    ),
                    "allowed_mentions": {"parse": []},
                },
            )

    async def _check_afk_return(
        self, author_id: str, channel_id: str, message_id: Any
    ) -> None:
        if not await self._store.clear_afk(user_id=author_id):
            return
        payload: dict[str, Any] = {
            "content": "Welcome back! I've removed your AFK status.",
            "allowed_mentions": {"parse": []},
        }
        if isinstance(message_id, str):
            payload["message_reference"] = {
                "message_id": message_id,
                "fail_if_not_exists": False,
            }
        await self._send_channel_message(channel_id, payload)

    async def _handle_message_delete(self, payload: dict[str, Any]) -> None:
        message_id = payload.get("id")
        if not isinstance(message_id, str):
            return
        cached = self._recent_messages.pop(message_id)
        if cached is None:
            return
        try:
            await self._store.record_deleted_message(
                DeletedMessage(
                    channel_id=cached.channel_id,
                    message_id=message_id,
                    author_id=cached.author_id,
                    author_name=cached.author_name,
                    content=cached.content,
                    deleted_at=utc_now(),
                )
            )
        except sqlite3.Error as exc:
            log_event(
                self._logger,
                logging.WARNING,
                "discord.snipe.record_failed",
                channel_id=cached.channel_id,
                message_id=message_id,
                exc=exc,
            )

    async def _run_scheduler_loop(self) -> None:
        while True:
            try:
                await self.run_scheduled_tasks()
            except Exception as exc:
                log_event(
                    self._logger,
                    logging.WARNING,
                    "discord.scheduler.tick_failed",
                    exc=exc,
                )
            await asyncio.sleep(self.poll_interval_seconds)

    async def run_scheduled_tasks(self, *, now: Optional[datetime] = None) -> None:
        """One scheduler tick: deliver what is due, prune history hourly."""
        now = now or utc_now()
        await self._deliver_scheduled_messages(now)
        await self._deliver_reminders(now)
        if self._last_history_prune is None or (
            now - self._last_history_prune
        ) >= timedelta(seconds=HISTORY_PRUNE_INTERVAL_SECONDS):
            pruned = await self._store.prune_deleted_messages(
                older_than=self.history_retention, now=now
            )
            self._last_history_prune = now
            if pruned:
                log_event(
                    self._logger,
                    logging.INFO,
                    "discord.scheduler.history_pruned",
                    pruned=pruned,
                )

    async def _deliver_reminders(self, now: datetime) -> None:
        for reminder in await self._store.due_reminders(now=now):
            try:
                await self._send_channel_message(
                    reminder.channel_id,
                    {
                        "content": truncate_for_discord(
                            f"<@{reminder.user_id}> Reminder: {reminder.message}",
                            self._config.max_message_length,
                        ),
                        "allowed_mentions": {"users": [reminder.user_id]},
                    },
                )
            except TransportError as exc:
                log_event(
                    self._logger,
                    logging.WARNING,
                    "discord.scheduler.reminder_failed",
                    reminder_id=reminder.reminder_id,
                    channel_id=reminder.channel_id,
                    exc=exc,
                )
                # A permanently broken channel must not be retried forever.
                if isinstance(exc, TransientError):
                    continue
            await self._store.complete_reminder(reminder.reminder_id)

    async def _deliver_scheduled_messages(self, now: datetime) -> None:
        for scheduled in await self._store.due_scheduled_messages(now=now):
            try:
                await self._send_channel_message(
                    scheduled.channel_id,
                    {
                        "content": truncate_for_discord(
                            scheduled.message, self._config.max_message_length
                        ),
                        "allowed_mentions": {"parse": []},
                    },
                )
            except TransportError as exc:
                log_event(
                    self._logger,
                    logging.WARNING,
                    "discord.scheduler.scheduled_message_failed",
                    schedule_id=scheduled.schedule_id,
                    channel_id=scheduled.channel_id,
                    exc=exc,
                )
                if isinstance(exc, TransientError):
                    continue
            await self._store.mark_scheduled_message_sent(scheduled.schedule_id)

    async def _send_channel_message(
        self, channel_id: str, payload: dict[str, Any]
    ) -> dict[str, Any]:
        return await self._rest.create_channel_message(
            channel_id=channel_id, payload=payload
        )


def create_discord_bot_service(
    config: DiscordBotConfig,
    *,
    logger: logging.Logger,
    bot_config: Optional[BotConfig] = None,
) -> DiscordBotService:
    return DiscordBotService(config, logger=logger, bot_config=bot_config)
