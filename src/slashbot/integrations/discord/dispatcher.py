"""Routes parsed interactions to registered handlers.

Each interaction runs on its own asyncio task; the only state shared between
them is the sealed ``CommandRegistry``. ``shutdown()`` closes a latch so no
new interactions are accepted, then waits for in-flight ones to finish.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional, Sequence, Set

from ...core.logging_utils import log_event
from .constants import DISCORD_MAX_MESSAGE_LENGTH
from .errors import CommandNotFoundError, InteractionStateError, TypeMismatchError
from .interactions import InteractionEvent, UserRef
from .options import InteractionOptions
from .registry import Choice, CommandDefinition, CommandRegistry
from .responder import InteractionResponder, InteractionRest, ResponderState

if TYPE_CHECKING:
    from ...core.config import BotConfig
    from ...core.store import BotStore
    from ...handlers.providers import ProviderClient

STATUS_COMPLETED = "completed"
STATUS_NOT_FOUND = "not_found"
STATUS_FAILED = "failed"
STATUS_UNACKNOWLEDGED = "unacknowledged"


@dataclass
class SessionContext:
    """Process-wide collaborators handed to every handler."""

    rest: Any
    registry: CommandRegistry
    application_id: str
    store: Optional["BotStore"] = None
    providers: Optional["ProviderClient"] = None
    config: Optional["BotConfig"] = None
    max_message_length: int = DISCORD_MAX_MESSAGE_LENGTH
    logger: logging.Logger = logging.getLogger("slashbot.handlers")


@dataclass
class CommandContext:
    session: SessionContext
    event: InteractionEvent
    responder: InteractionResponder
    options: InteractionOptions
    definition: CommandDefinition

    @property
    def user(self) -> UserRef:
        return self.event.user

    @property
    def guild_id(self) -> Optional[str]:
        return self.event.guild_id

    @property
    def channel_id(self) -> Optional[str]:
        return self.event.channel_id


@dataclass
class AutocompleteContext(CommandContext):
    @property
    def focused(self) -> Optional[str]:
        return self.event.focused_option

    @property
    def focused_value(self) -> str:
        name = self.event.focused_option
        if name is None:
            return ""
        option = self.event.arguments.get(name)
        return str(option.value) if option is not None else ""

    async def suggest(self, choices: Sequence[Choice]) -> None:
        await self.responder.respond_autocomplete(choices)


@dataclass(frozen=True)
class DispatchOutcome:
    status: str
    command_name: str
    interaction_id: str
    responder_state: Optional[ResponderState] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.status == STATUS_COMPLETED


class InteractionDispatcher:
    def __init__(
        self,
        registry: CommandRegistry,
        session: SessionContext,
        *,
        rest: Optional[InteractionRest] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._registry = registry
        self._session = session
        self._rest = rest if rest is not None else session.rest
        self._logger = logger or logging.getLogger(__name__)
        self._tasks: Set[asyncio.Task[DispatchOutcome]] = set()
        self._accepting = True
        self._idle_event = asyncio.Event()
        self._idle_event.set()

    @property
    def accepting(self) -> bool:
        return self._accepting

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def submit(self, event: InteractionEvent) -> Optional[asyncio.Task[DispatchOutcome]]:
        """Schedule ``dispatch(event)`` on its own task.

        Returns ``None`` once shutdown has begun.
        """
        if not self._accepting:
            log_event(
                self._logger,
                logging.INFO,
                "discord.dispatch.rejected",
                interaction_id=event.interaction_id,
                command=event.command_name,
                reason="shutting_down",
            )
            return None
        task = asyncio.create_task(self.dispatch(event))
        self._tasks.add(task)
        self._idle_event.clear()
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task[DispatchOutcome]) -> None:
        self._tasks.discard(task)
        if not self._tasks:
            self._idle_event.set()

    async def wait_idle(self) -> None:
        await self._idle_event.wait()

    async def shutdown(self, *, timeout: Optional[float] = None) -> None:
        """Stop accepting interactions and let in-flight ones finish."""
        self._accepting = False
        pending = len(self._tasks)
        log_event(
            self._logger,
            logging.INFO,
            "discord.dispatch.shutdown",
            in_flight=pending,
        )
        if not pending:
            return
        if timeout is None:
            await self.wait_idle()
            return
        try:
            await asyncio.wait_for(self.wait_idle(), timeout=timeout)
        except asyncio.TimeoutError:
            log_event(
                self._logger,
                logging.WARNING,
                "discord.dispatch.shutdown.timeout",
                in_flight=len(self._tasks),
                timeout_seconds=timeout,
            )

    async def dispatch(self, event: InteractionEvent) -> DispatchOutcome:
        log_event(
            self._logger,
            logging.INFO,
            "discord.dispatch.received",
            interaction_id=event.interaction_id,
            command=event.command_name,
            subcommand=" ".join(event.subcommand) or None,
            user_id=event.user.id,
            guild_id=event.guild_id,
            channel_id=event.channel_id,
            autocomplete=event.is_autocomplete or None,
        )
        try:
            definition = self._registry.lookup(event.command_name)
        except CommandNotFoundError as exc:
            # The platform catalogue is stale; nothing local can answer it.
            log_event(
                self._logger,
                logging.WARNING,
                "discord.dispatch.not_found",
                interaction_id=event.interaction_id,
                command=event.command_name,
            )
            return DispatchOutcome(
                status=STATUS_NOT_FOUND,
                command_name=event.command_name,
                interaction_id=event.interaction_id,
                error=exc,
            )

        responder = InteractionResponder.for_event(
            self._rest,
            event,
            application_id=self._session.application_id,
            max_message_length=self._session.max_message_length,
        )
        options = InteractionOptions(event, definition)
        error: Optional[BaseException] = None
        try:
            if event.is_autocomplete:
                await self._run_autocomplete(definition, event, responder, options)
            else:
                await definition.handler(
                    CommandContext(
                        session=self._session,
                        event=event,
                        responder=responder,
                        options=options,
                        definition=definition,
                    )
                )
        except TypeMismatchError as exc:
            error = exc
            log_event(
                self._logger,
                logging.ERROR,
                "discord.dispatch.handler.contract_violation",
                interaction_id=event.interaction_id,
                command=event.command_name,
                option=exc.name,
                expected=exc.expected,
                actual=exc.actual,
                exc=exc,
            )
        except InteractionStateError as exc:
            error = exc
            log_event(
                self._logger,
                logging.ERROR,
                "discord.dispatch.handler.state_misuse",
                interaction_id=event.interaction_id,
                command=event.command_name,
                operation=exc.operation,
                state=exc.state,
                exc=exc,
            )
        except Exception as exc:
            error = exc
            log_event(
                self._logger,
                logging.WARNING,
                "discord.dispatch.handler.failed",
                interaction_id=event.interaction_id,
                command=event.command_name,
                responder_state=responder.state.value,
                exc=exc,
            )

        state = responder.state
        if state is ResponderState.UNACKNOWLEDGED:
            log_event(
                self._logger,
                logging.ERROR,
                "discord.dispatch.unacknowledged",
                interaction_id=event.interaction_id,
                command=event.command_name,
                handler_failed=error is not None,
            )
            status = STATUS_UNACKNOWLEDGED
        elif error is not None:
            status = STATUS_FAILED
        else:
            status = STATUS_COMPLETED
        log_event(
            self._logger,
            logging.INFO,
            "discord.dispatch.done",
            interaction_id=event.interaction_id,
            command=event.command_name,
            status=status,
            responder_state=state.value,
            followups=responder.followup_count or None,
        )
        return DispatchOutcome(
            status=status,
            command_name=event.command_name,
            interaction_id=event.interaction_id,
            responder_state=state,
            error=error,
        )

    async def _run_autocomplete(
        self,
        definition: CommandDefinition,
        event: InteractionEvent,
        responder: InteractionResponder,
        options: InteractionOptions,
    ) -> None:
        context = AutocompleteContext(
            session=self._session,
            event=event,
            responder=responder,
            options=options,
            definition=definition,
        )
        if definition.autocomplete is None:
            await context.suggest([])
            return
        await definition.autocomplete(context)
