from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Optional

import httpx

from ...core.logging_utils import log_event
from .constants import DISCORD_API_BASE_URL
from .errors import DiscordAPIError, DiscordPermanentError, DiscordTransientError

logger = logging.getLogger(__name__)

JsonBody = dict[str, Any] | list[dict[str, Any]]

_NETWORK_ERRORS_WORTH_RETRYING = (
    httpx.ConnectError,
    httpx.ReadError,
    httpx.WriteError,
    httpx.TimeoutException,
)


def _short_body(response: httpx.Response) -> str:
    return " ".join((response.text or "").split())[:200]


def _rate_limit_delay(response: httpx.Response) -> Optional[float]:
    """Seconds to wait before retrying a 429, from the header or JSON body."""
    header = response.headers.get("Retry-After")
    if header is not None:
        try:
            return max(float(header), 0.0)
        except ValueError:
            return 0.0
    try:
        body = response.json()
    except ValueError:
        return None
    value = body.get("retry_after") if isinstance(body, dict) else None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return max(float(value), 0.0)
    return None


def _as_object(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_objects(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def _commands_path(application_id: str, guild_id: Optional[str]) -> str:
    if guild_id is None:
        return f"/applications/{application_id}/commands"
    return f"/applications/{application_id}/guilds/{guild_id}/commands"


class DiscordRestClient:
    """Async client for the slice of the Discord HTTP API the bot uses.

    Interaction callbacks, original-response edits and follow-ups go out
    exactly once because a replayed callback could acknowledge twice. Every
    other call waits out 429s and backs off on 5xx and network errors, up to
    ``max_retries`` times each.
    """

    def __init__(
        self,
        *,
        bot_token: str,
        timeout_seconds: float = 10.0,
        base_url: str = DISCORD_API_BASE_URL,
        max_retries: int = 3,
        retry_base_delay: float = 1.0,
        retry_max_delay: float = 30.0,
    ) -> None:
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout_seconds)
        self._headers = {"Authorization": f"Bot {bot_token}"}
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay
        self._retry_max_delay = retry_max_delay

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "DiscordRestClient":
        return self

    async def __aexit__(self, *_exc_info: object) -> None:
        await self.close()

    def _backoff(self, attempt: int) -> float:
        delay = self._retry_base_delay * (2**attempt) + random.uniform(0, 1)
        return float(min(delay, self._retry_max_delay))

    async def _request(
        self,
        method: str,
        path: str,
        *,
        body: Optional[JsonBody] = None,
        replayable: bool = True,
    ) -> Any:
        budget = self._max_retries if replayable else 0
        failures = 0
        rate_limited = 0
        route = f"{method} {path}"

        while True:
            try:
                response = await self._client.request(
                    method, path, json=body, headers=self._headers
                )
            except httpx.HTTPError as exc:
                if isinstance(exc, _NETWORK_ERRORS_WORTH_RETRYING) and failures < budget:
                    failures += 1
                    await self._wait(route, self._backoff(failures), "network", exc=exc)
                    continue
                raise DiscordTransientError(
                    f"Discord API network error for {route}: {exc}"
                ) from exc

            status = response.status_code
            if status < 300:
                return self._decode(response, route)

            if status == 429:
                retry_after = _rate_limit_delay(response)
                if retry_after is not None and rate_limited < budget:
                    rate_limited += 1
                    await self._wait(route, retry_after, "rate_limited")
                    continue
                raise DiscordTransientError(
                    f"Discord API rate limit exceeded for {route}",
                    status_code=status,
                    retry_after=retry_after,
                )

            detail = f"status={status} body={_short_body(response)!r}"
            if status >= 500:
                if failures < budget:
                    failures += 1
                    await self._wait(
                        route, self._backoff(failures), "server_error", status=status
                    )
                    continue
                raise DiscordTransientError(
                    f"Discord API server error for {route}: {detail}",
                    status_code=status,
                )
            raise DiscordPermanentError(
                f"Discord API request failed for {route}: {detail}",
                status_code=status,
            )

    async def _wait(
        self, route: str, delay: float, reason: str, **fields: Any
    ) -> None:
        log_event(
            logger,
            logging.WARNING if reason != "rate_limited" else logging.INFO,
            "discord.rest.retry",
            route=route,
            reason=reason,
            delay_seconds=round(delay, 2),
            **fields,
        )
        await asyncio.sleep(delay)

    @staticmethod
    def _decode(response: httpx.Response, route: str) -> Any:
        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise DiscordAPIError(
                f"Discord API returned a non-JSON body for {route}",
                status_code=response.status_code,
            ) from exc

    # Interaction acknowledgment: never replayed.

    async def create_interaction_response(
        self,
        *,
        interaction_id: str,
        interaction_token: str,
        payload: dict[str, Any],
    ) -> None:
        await self._request(
            "POST",
            f"/interactions/{interaction_id}/{interaction_token}/callback",
            body=payload,
            replayable=False,
        )

    async def edit_original_interaction_response(
        self,
        *,
        application_id: str,
        interaction_token: str,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        return _as_object(
            await self._request(
                "PATCH",
                f"/webhooks/{application_id}/{interaction_token}/messages/@original",
                body=payload,
                replayable=False,
            )
        )

    async def create_followup_message(
        self,
        *,
        application_id: str,
        interaction_token: str,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        return _as_object(
            await self._request(
                "POST",
                f"/webhooks/{application_id}/{interaction_token}",
                body=payload,
                replayable=False,
            )
        )

    # Everything else.

    async def get_gateway_bot(self) -> dict[str, Any]:
        return _as_object(await self._request("GET", "/gateway/bot"))

    async def list_application_commands(
        self, *, application_id: str, guild_id: Optional[str] = None
    ) -> list[dict[str, Any]]:
        return _as_objects(
            await self._request("GET", _commands_path(application_id, guild_id))
        )

    async def bulk_overwrite_application_commands(
        self,
        *,
        application_id: str,
        commands: list[dict[str, Any]],
        guild_id: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        return _as_objects(
            await self._request(
                "PUT", _commands_path(application_id, guild_id), body=commands
            )
        )

    async def create_channel_message(
        self, *, channel_id: str, payload: dict[str, Any]
    ) -> dict[str, Any]:
        return _as_object(
            await self._request("POST", f"/channels/{channel_id}/messages", body=payload)
        )

    async def get_user(self, *, user_id: str) -> dict[str, Any]:
        return _as_object(await self._request("GET", f"/users/{user_id}"))

    async def get_guild(self, *, guild_id: str, with_counts: bool = True) -> dict[str, Any]:
        query = "?with_counts=true" if with_counts else ""
        return _as_object(await self._request("GET", f"/guilds/{guild_id}{query}"))

    async def get_channel(self, *, channel_id: str) -> dict[str, Any]:
        return _as_object(await self._request("GET", f"/channels/{channel_id}"))
