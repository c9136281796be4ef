"""Acknowledgment state machine for a single interaction.

Discord requires the first response to an interaction within three seconds.
That first response is either the final message (``respond``) or a deferral
(``defer``) that buys fifteen minutes to edit the original response. After
either, additional messages go out as follow-ups::

    UNACKNOWLEDGED --respond--> RESPONDED --follow_up*--> RESPONDED
    UNACKNOWLEDGED --defer----> DEFERRED  --edit_response*/follow_up*--> DEFERRED

State only advances after the platform call returns successfully, so a
``TransportError`` leaves the responder where it was.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol, Sequence

from ...core.logging_utils import log_event
from .constants import (
    CALLBACK_AUTOCOMPLETE_RESULT,
    CALLBACK_CHANNEL_MESSAGE_WITH_SOURCE,
    CALLBACK_DEFERRED_CHANNEL_MESSAGE_WITH_SOURCE,
    DISCORD_MAX_CHOICES,
    DISCORD_MAX_MESSAGE_LENGTH,
    MESSAGE_FLAG_EPHEMERAL,
)
from .errors import (
    AlreadyAcknowledgedError,
    NotYetAcknowledgedError,
    TransportError,
)
from .interactions import InteractionEvent
from .registry import Choice
from .rendering import build_message_payload


class InteractionRest(Protocol):
    """The slice of the REST client the responder drives."""

    async def create_interaction_response(
        self,
        *,
        interaction_id: str,
        interaction_token: str,
        payload: dict[str, Any],
    ) -> None: ...

    async def edit_original_interaction_response(
        self,
        *,
        application_id: str,
        interaction_token: str,
        payload: dict[str, Any],
    ) -> dict[str, Any]: ...

    async def create_followup_message(
        self,
        *,
        application_id: str,
        interaction_token: str,
        payload: dict[str, Any],
    ) -> dict[str, Any]: ...


class ResponderState(str, enum.Enum):
    UNACKNOWLEDGED = "unacknowledged"
    RESPONDED = "responded"
    DEFERRED = "deferred"


@dataclass(frozen=True)
class ResponderStats:
    state: ResponderState
    ephemeral: Optional[bool]
    respond_count: int
    defer_count: int
    edit_count: int
    followup_count: int


class InteractionResponder:
    """Wraps the four interaction response primitives behind state checks.

    One responder per ``InteractionEvent``; it is never reused. Calls are
    serialized with an internal lock so sub-tasks of one handler cannot
    interleave wire writes.
    """

    def __init__(
        self,
        rest: InteractionRest,
        *,
        application_id: str,
        interaction_id: str,
        interaction_token: str,
        max_message_length: int = DISCORD_MAX_MESSAGE_LENGTH,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._rest = rest
        self._application_id = application_id
        self._interaction_id = interaction_id
        self._interaction_token = interaction_token
        self._max_message_length = max_message_length
        self._logger = logger or logging.getLogger(__name__)
        self._lock = asyncio.Lock()
        self._state = ResponderState.UNACKNOWLEDGED
        self._ephemeral: Optional[bool] = None
        self._respond_count = 0
        self._defer_count = 0
        self._edit_count = 0
        self._followup_count = 0

    @classmethod
    def for_event(
        cls,
        rest: InteractionRest,
        event: InteractionEvent,
        *,
        application_id: str,
        max_message_length: int = DISCORD_MAX_MESSAGE_LENGTH,
        logger: Optional[logging.Logger] = None,
    ) -> "InteractionResponder":
        return cls(
            rest,
            application_id=event.application_id or application_id,
            interaction_id=event.interaction_id,
            interaction_token=event.token,
            max_message_length=max_message_length,
            logger=logger,
        )

    @property
    def state(self) -> ResponderState:
        return self._state

    @property
    def acknowledged(self) -> bool:
        return self._state is not ResponderState.UNACKNOWLEDGED

    @property
    def ephemeral(self) -> Optional[bool]:
        """Visibility fixed by the first acknowledgment; ``None`` until then."""
        return self._ephemeral

    @property
    def followup_count(self) -> int:
        return self._followup_count

    @property
    def edit_count(self) -> int:
        return self._edit_count

    def stats(self) -> ResponderStats:
        return ResponderStats(
            state=self._state,
            ephemeral=self._ephemeral,
            respond_count=self._respond_count,
            defer_count=self._defer_count,
            edit_count=self._edit_count,
            followup_count=self._followup_count,
        )

    async def respond(
        self,
        content: Optional[str] = None,
        *,
        embeds: Optional[list[dict[str, Any]]] = None,
        components: Optional[list[dict[str, Any]]] = None,
        ephemeral: bool = False,
    ) -> None:
        data = self._message(content, embeds, components, ephemeral=ephemeral)
        async with self._lock:
            self._require_unacknowledged("respond")
            await self._send_callback(
                "respond",
                {"type": CALLBACK_CHANNEL_MESSAGE_WITH_SOURCE, "data": data},
            )
            self._respond_count += 1
            self._ephemeral = ephemeral
            self._state = ResponderState.RESPONDED

    async def respond_ephemeral(
        self,
        content: Optional[str] = None,
        *,
        embeds: Optional[list[dict[str, Any]]] = None,
        components: Optional[list[dict[str, Any]]] = None,
    ) -> None:
        await self.respond(
            content, embeds=embeds, components=components, ephemeral=True
        )

    async def defer(self, *, ephemeral: bool = False) -> None:
        payload: dict[str, Any] = {
            "type": CALLBACK_DEFERRED_CHANNEL_MESSAGE_WITH_SOURCE
        }
        if ephemeral:
            payload["data"] = {"flags": MESSAGE_FLAG_EPHEMERAL}
        async with self._lock:
            self._require_unacknowledged("defer")
            await self._send_callback("defer", payload)
            self._defer_count += 1
            self._ephemeral = ephemeral
            self._state = ResponderState.DEFERRED

    async def respond_autocomplete(self, choices: Sequence[Choice]) -> None:
        data = {
            "choices": [
                {"name": choice.name[:100], "value": choice.value}
                for choice in list(choices)[:DISCORD_MAX_CHOICES]
            ]
        }
        async with self._lock:
            self._require_unacknowledged("respond_autocomplete")
            await self._send_callback(
                "respond_autocomplete",
                {"type": CALLBACK_AUTOCOMPLETE_RESULT, "data": data},
            )
            self._respond_count += 1
            self._state = ResponderState.RESPONDED

    async def edit_response(
        self,
        content: Optional[str] = None,
        *,
        embeds: Optional[list[dict[str, Any]]] = None,
        components: Optional[list[dict[str, Any]]] = None,
    ) -> dict[str, Any]:
        """Replace the deferred placeholder; last write wins.

        Visibility cannot change after ``defer``, so no flags are sent.
        """
        payload = self._message(content, embeds, components, ephemeral=False)
        async with self._lock:
            if self._state is ResponderState.UNACKNOWLEDGED:
                raise NotYetAcknowledgedError(
                    "edit_response called before the interaction was acknowledged",
                    state=self._state.value,
                    operation="edit_response",
                )
            if self._state is not ResponderState.DEFERRED:
                raise AlreadyAcknowledgedError(
                    "edit_response is only valid after defer; use follow_up",
                    state=self._state.value,
                    operation="edit_response",
                )
            try:
                message = await self._rest.edit_original_interaction_response(
                    application_id=self._application_id,
                    interaction_token=self._interaction_token,
                    payload=payload,
                )
            except TransportError as exc:
                self._log_transport_failure("edit_response", exc)
                raise
            self._edit_count += 1
            return message

    async def follow_up(
        self,
        content: Optional[str] = None,
        *,
        embeds: Optional[list[dict[str, Any]]] = None,
        components: Optional[list[dict[str, Any]]] = None,
        ephemeral: bool = False,
    ) -> dict[str, Any]:
        payload = self._message(content, embeds, components, ephemeral=ephemeral)
        async with self._lock:
            if self._state is ResponderState.UNACKNOWLEDGED:
                raise NotYetAcknowledgedError(
                    "follow_up called before the interaction was acknowledged",
                    state=self._state.value,
                    operation="follow_up",
                )
            try:
                message = await self._rest.create_followup_message(
                    application_id=self._application_id,
                    interaction_token=self._interaction_token,
                    payload=payload,
                )
            except TransportError as exc:
                self._log_transport_failure("follow_up", exc)
                raise
            self._followup_count += 1
            return message

    async def send(
        self,
        content: Optional[str] = None,
        *,
        embeds: Optional[list[dict[str, Any]]] = None,
        ephemeral: bool = False,
    ) -> None:
        """Deliver a message through whichever operation the state allows.

        Responds when unacknowledged, edits a deferred response, and
        follows up otherwise.
        """
        if self._state is ResponderState.UNACKNOWLEDGED:
            await self.respond(content, embeds=embeds, ephemeral=ephemeral)
        elif self._state is ResponderState.DEFERRED and self._edit_count == 0:
            await self.edit_response(content, embeds=embeds)
        else:
            await self.follow_up(content, embeds=embeds, ephemeral=ephemeral)

    def _message(
        self,
        content: Optional[str],
        embeds: Optional[list[dict[str, Any]]],
        components: Optional[list[dict[str, Any]]],
        *,
        ephemeral: bool,
    ) -> dict[str, Any]:
        return build_message_payload(
            content,
            embeds=embeds,
            components=components,
            ephemeral=ephemeral,
            max_len=self._max_message_length,
        )

    def _require_unacknowledged(self, operation: str) -> None:
        if self._state is not ResponderState.UNACKNOWLEDGED:
            raise AlreadyAcknowledgedError(
                f"{operation} called but the interaction is already {self._state.value}",
                state=self._state.value,
                operation=operation,
            )

    async def _send_callback(self, operation: str, payload: dict[str, Any]) -> None:
        try:
            await self._rest.create_interaction_response(
                interaction_id=self._interaction_id,
                interaction_token=self._interaction_token,
                payload=payload,
            )
        except TransportError as exc:
            self._log_transport_failure(operation, exc)
            raise

    def _log_transport_failure(self, operation: str, exc: TransportError) -> None:
        log_event(
            self._logger,
            logging.WARNING,
            "discord.responder.transport_failed",
            interaction_id=self._interaction_id,
            operation=operation,
            state=self._state.value,
            status_code=exc.status_code,
            exc=exc,
        )
