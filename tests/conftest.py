"""Test harness configuration.

This repo uses a `src/` layout. Ensure tests always import the in-repo code
rather than an older installed `slashbot` package.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Callable

import pytest


def pytest_configure() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    src_path = str(repo_root / "src")
    if sys.path[:1] != [src_path] and src_path not in sys.path:
        sys.path.insert(0, src_path)


@pytest.fixture()
def anyio_backend() -> str:
    """The bot is built on asyncio; run anyio-marked tests on that backend."""
    return "asyncio"


@pytest.fixture()
def interaction_payload() -> Callable[..., dict[str, Any]]:
    """Factory for INTERACTION_CREATE payloads shaped like the gateway sends."""

    def build(
        name: str = "ping",
        *,
        options: list[dict[str, Any]] | None = None,
        interaction_type: int = 2,
        interaction_id: str = "inter-1",
        token: str = "token-1",
        guild_id: str | None = "guild-1",
        channel_id: str = "channel-1",
        user_id: str = "user-1",
        resolved: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        data: dict[str, Any] = {"name": name, "options": options or []}
        if resolved is not None:
            data["resolved"] = resolved
        payload: dict[str, Any] = {
            "id": interaction_id,
            "token": token,
            "application_id": "app-1",
            "type": interaction_type,
            "channel_id": channel_id,
            "data": data,
        }
        user = {"id": user_id, "username": "alice", "global_name": "Alice"}
        if guild_id is not None:
            payload["guild_id"] = guild_id
            payload["member"] = {"user": user}
        else:
            payload["user"] = user
        return payload

    return build


class FakeRest:
    """Records every REST call the bot makes; can be told to fail some."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.fail_operations: set[str] = set()
        self.users: dict[str, dict[str, Any]] = {}
        self.guilds: dict[str, dict[str, Any]] = {}

    def _record(self, operation: str, **kwargs: Any) -> None:
        from slashbot.integrations.discord.errors import DiscordTransientError

        if operation in self.fail_operations:
            raise DiscordTransientError(f"{operation} failed", status_code=503)
        self.calls.append((operation, kwargs))

    def operations(self) -> list[str]:
        return [operation for operation, _ in self.calls]

    def payloads(self, operation: str) -> list[dict[str, Any]]:
        return [kwargs["payload"] for op, kwargs in self.calls if op == operation]

    async def create_interaction_response(
        self, *, interaction_id: str, interaction_token: str, payload: dict[str, Any]
    ) -> None:
        self._record(
            "callback",
            interaction_id=interaction_id,
            interaction_token=interaction_token,
            payload=payload,
        )

    async def edit_original_interaction_response(
        self, *, application_id: str, interaction_token: str, payload: dict[str, Any]
    ) -> dict[str, Any]:
        self._record(
            "edit",
            application_id=application_id,
            interaction_token=interaction_token,
            payload=payload,
        )
        return {"id": "original"}

    async def create_followup_message(
        self, *, application_id: str, interaction_token: str, payload: dict[str, Any]
    ) -> dict[str, Any]:
        self._record(
            "followup",
            application_id=application_id,
            interaction_token=interaction_token,
            payload=payload,
        )
        return {"id": f"followup-{len(self.calls)}"}

    async def create_channel_message(
        self, *, channel_id: str, payload: dict[str, Any]
    ) -> dict[str, Any]:
        self._record("channel_message", channel_id=channel_id, payload=payload)
        return {"id": "msg-1", "channel_id": channel_id}

    async def bulk_overwrite_application_commands(
        self,
        *,
        application_id: str,
        commands: list[dict[str, Any]],
        guild_id: str | None = None,
    ) -> list[dict[str, Any]]:
        self._record(
            "sync",
            application_id=application_id,
            commands=commands,
            guild_id=guild_id,
        )
        return [{"id": f"cmd-{index}"} for index, _ in enumerate(commands)]

    async def get_user(self, *, user_id: str) -> dict[str, Any]:
        self._record("get_user", user_id=user_id)
        return self.users.get(user_id, {"id": user_id})

    async def get_guild(self, *, guild_id: str, with_counts: bool = True) -> dict[str, Any]:
        self._record("get_guild", guild_id=guild_id)
        return self.guilds.get(guild_id, {"id": guild_id, "name": "Guild"})

    async def close(self) -> None:
        self._record("close")


@pytest.fixture()
def fake_rest() -> FakeRest:
    return FakeRest()
