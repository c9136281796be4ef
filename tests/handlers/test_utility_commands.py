from __future__ import annotations

import sqlite3
from datetime import timedelta
from pathlib import Path
from typing import Any

import pytest

from slashbot.core.sqlite_utils import utc_now
from slashbot.core.store import BotStore, DeletedMessage
from slashbot.handlers import build_registry
from slashbot.handlers.utility import CalcError, evaluate_expression, parse_duration
from slashbot.integrations.discord.dispatcher import InteractionDispatcher, SessionContext
from slashbot.integrations.discord.interactions import parse_interaction_event


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("30s", timedelta(seconds=30)),
        ("1h30m", timedelta(hours=1, minutes=30)),
        ("2d", timedelta(days=2)),
        ("1w 3d", timedelta(weeks=1, days=3)),
        (" 5M ", timedelta(minutes=5)),
    ],
)
def test_parse_duration_accepts_compound_units(text: str, expected: timedelta) -> None:
    assert parse_duration(text) == expected


@pytest.mark.parametrize("text", ["", "soon", "10", "1y", "0m", "400d", "5m later"])
def test_parse_duration_rejects_invalid(text: str) -> None:
    with pytest.raises(ValueError):
        parse_duration(text)


@pytest.mark.parametrize(
    ("expression", "expected"),
    [
        ("2 + 3 * 4", "14"),
        ("(2 + 3) * 4", "20"),
        ("2 ^ 10", "1024"),
        ("2 ** 3", "8"),
        ("10 / 4", "2.5"),
        ("10 / 5", "2"),
        ("1 / 3", "0.3333"),
        ("-7 % 3", "2"),
        ("7 // 2", "3"),
    ],
)
def test_evaluate_expression(expression: str, expected: str) -> None:
    assert evaluate_expression(expression) == expected


@pytest.mark.parametrize(
    "expression",
    [
        "",
        "1 / 0",
        "5 % 0",
        "__import__('os')",
        "x + 1",
        "2 ^ 100000",
        "99 ** 999",
        "9**999*9**999*9**999*9**999*9**999",
        "-(9**999) * 9**999 * 9**999",
        "((-1)**0.5)%2",
        "((-1)**0.5)//1",
        "(-8) ** 0.5",
        "(1",
        "'a' * 3",
        "1" * 250,
    ],
)
def test_evaluate_expression_rejects_unsafe_or_invalid(expression: str) -> None:
    with pytest.raises(CalcError):
        evaluate_expression(expression)


def _session(fake_rest, store: BotStore | None = None) -> SessionContext:
    return SessionContext(
        rest=fake_rest,
        registry=build_registry(),
        application_id="app-1",
        store=store,
    )


async def _dispatch(fake_rest, interaction_payload, name: str, *, store=None, **kwargs: Any):
    session = _session(fake_rest, store)
    event = parse_interaction_event(interaction_payload(name, **kwargs))
    assert event is not None
    return await InteractionDispatcher(session.registry, session).dispatch(event)


@pytest.fixture()
async def store(tmp_path: Path):
    bot_store = BotStore(tmp_path / "bot.sqlite3")
    await bot_store.initialize()
    try:
        yield bot_store
    finally:
        await bot_store.close()


@pytest.mark.anyio
async def test_ping_defers_then_edits_with_latency(fake_rest, interaction_payload) -> None:
    outcome = await _dispatch(fake_rest, interaction_payload, "ping")

    assert outcome.ok
    assert fake_rest.operations() == ["callback", "edit"]
    embed = fake_rest.payloads("edit")[0]["embeds"][0]
    assert embed["title"] == "Pong!"
    assert embed["fields"][0]["name"] == "API Latency"


@pytest.mark.anyio
async def test_calc_reports_invalid_expression_ephemerally(
    fake_rest, interaction_payload
) -> None:
    outcome = await _dispatch(
        fake_rest,
        interaction_payload,
        "calc",
        options=[{"name": "expression", "type": 3, "value": "1 / 0"}],
    )

    assert outcome.ok
    data = fake_rest.payloads("callback")[0]["data"]
    assert data["flags"] == 64
    assert data["content"].startswith("Invalid expression")


@pytest.mark.anyio
@pytest.mark.parametrize(
    "expression",
    ["9**999*9**999*9**999*9**999*9**999", "((-1)**0.5)%2"],
)
async def test_calc_acknowledges_oversized_or_complex_results(
    fake_rest, interaction_payload, expression: str
) -> None:
    outcome = await _dispatch(
        fake_rest,
        interaction_payload,
        "calc",
        options=[{"name": "expression", "type": 3, "value": expression}],
    )

    assert outcome.ok
    assert fake_rest.operations() == ["callback"]
    data = fake_rest.payloads("callback")[0]["data"]
    assert data["flags"] == 64
    assert data["content"].startswith("Invalid expression")


@pytest.mark.anyio
async def test_remind_persists_reminder(fake_rest, interaction_payload, store) -> None:
    outcome = await _dispatch(
        fake_rest,
        interaction_payload,
        "remind",
        store=store,
        options=[
            {"name": "time", "type": 3, "value": "1h"},
            {"name": "message", "type": 3, "value": "stretch"},
        ],
    )

    assert outcome.ok
    reminders = await store.list_reminders(user_id="user-1")
    assert [(r.channel_id, r.message) for r in reminders] == [("channel-1", "stretch")]
    assert fake_rest.payloads("callback")[0]["data"]["embeds"][0]["title"] == "Reminder Set"


@pytest.mark.anyio
async def test_remind_rejects_bad_duration(fake_rest, interaction_payload, store) -> None:
    await _dispatch(
        fake_rest,
        interaction_payload,
        "remind",
        store=store,
        options=[
            {"name": "time", "type": 3, "value": "tomorrow"},
            {"name": "message", "type": 3, "value": "stretch"},
        ],
    )

    assert await store.list_reminders(user_id="user-1") == []
    assert "Invalid time format" in fake_rest.payloads("callback")[0]["data"]["content"]


@pytest.mark.anyio
async def test_reminders_lists_pending(fake_rest, interaction_payload, store) -> None:
    await store.add_reminder(
        user_id="user-1",
        channel_id="channel-1",
        message="water plants",
        remind_at=utc_now() + timedelta(hours=2),
    )

    await _dispatch(fake_rest, interaction_payload, "reminders", store=store)

    data = fake_rest.payloads("callback")[0]["data"]
    assert data["flags"] == 64
    assert "water plants" in data["embeds"][0]["description"]


@pytest.mark.anyio
async def test_afk_sets_status(fake_rest, interaction_payload, store) -> None:
    await _dispatch(
        fake_rest,
        interaction_payload,
        "afk",
        store=store,
        options=[{"name": "message", "type": 3, "value": "lunch"}],
    )

    status = await store.get_afk(user_id="user-1")
    assert status is not None and status.message == "lunch"
    assert fake_rest.payloads("callback")[0]["data"]["content"] == "You are now AFK: lunch"


@pytest.mark.anyio
async def test_snipe_returns_recent_deleted_messages(
    fake_rest, interaction_payload, store
) -> None:
    await store.record_deleted_message(
        DeletedMessage(
            channel_id="channel-1",
            message_id="m1",
            author_id="user-2",
            author_name="bob",
            content="oops",
            deleted_at=utc_now(),
        )
    )

    await _dispatch(
        fake_rest,
        interaction_payload,
        "snipe",
        store=store,
        options=[{"name": "amount", "type": 4, "value": 50}],
    )

    data = fake_rest.payloads("callback")[0]["data"]
    assert data["flags"] == 64
    fields = data["embeds"][0]["fields"]
    assert len(fields) == 1
    assert fields[0]["value"] == "oops"


@pytest.mark.anyio
async def test_snipe_with_nothing_deleted(fake_rest, interaction_payload, store) -> None:
    await _dispatch(fake_rest, interaction_payload, "snipe", store=store)

    data = fake_rest.payloads("callback")[0]["data"]
    assert data["content"] == "No deleted messages found in this channel."


@pytest.mark.anyio
async def test_schedule_targets_requested_channel(
    fake_rest, interaction_payload, store
) -> None:
    await _dispatch(
        fake_rest,
        interaction_payload,
        "schedule",
        store=store,
        options=[
            {"name": "time", "type": 3, "value": "10m"},
            {"name": "message", "type": 3, "value": "standup"},
            {"name": "channel", "type": 7, "value": "channel-9"},
        ],
    )

    due = await store.due_scheduled_messages(now=utc_now() + timedelta(minutes=11))
    assert [(item.channel_id, item.guild_id, item.message) for item in due] == [
        ("channel-9", "guild-1", "standup")
    ]


class _FailingStore:
    async def set_afk(self, **_kwargs: Any) -> None:
        raise sqlite3.OperationalError("database is locked")


@pytest.mark.anyio
async def test_store_failure_is_reported_not_raised(fake_rest, interaction_payload) -> None:
    outcome = await _dispatch(
        fake_rest,
        interaction_payload,
        "afk",
        store=_FailingStore(),
        options=[{"name": "message", "type": 3, "value": "lunch"}],
    )

    assert outcome.ok
    data = fake_rest.payloads("callback")[0]["data"]
    assert data == {
        "content": "Failed to set AFK status.",
        "flags": 64,
        "allowed_mentions": {"parse": []},
    }
