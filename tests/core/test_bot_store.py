from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from slashbot.core.store import BotStore, DeletedMessage

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
async def store(tmp_path: Path):
    bot_store = BotStore(tmp_path / "state" / "bot.sqlite3")
    await bot_store.initialize()
    try:
        yield bot_store
    finally:
        await bot_store.close()


@pytest.mark.anyio
async def test_initialize_creates_database(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "bot.sqlite3"
    bot_store = BotStore(path)
    await bot_store.initialize()
    await bot_store.close()

    assert path.exists()
    assert bot_store.path == path


@pytest.mark.anyio
async def test_due_reminders_are_returned_until_completed(store: BotStore) -> None:
    due = await store.add_reminder(
        user_id="u1", channel_id="c1", message="stretch", remind_at=NOW - timedelta(minutes=1)
    )
    await store.add_reminder(
        user_id="u1", channel_id="c1", message="later", remind_at=NOW + timedelta(hours=1)
    )

    reminders = await store.due_reminders(now=NOW)
    assert [reminder.message for reminder in reminders] == ["stretch"]
    assert reminders[0].reminder_id == due.reminder_id
    assert reminders[0].remind_at == NOW - timedelta(minutes=1)

    await store.complete_reminder(due.reminder_id)
    assert await store.due_reminders(now=NOW) == []
    pending = await store.list_reminders(user_id="u1")
    assert [reminder.message for reminder in pending] == ["later"]


@pytest.mark.anyio
async def test_naive_and_offset_times_compare_in_utc(store: BotStore) -> None:
    plus_two = timezone(timedelta(hours=2))
    await store.add_reminder(
        user_id="u1",
        channel_id="c1",
        message="offset",
        remind_at=datetime(2024, 5, 1, 13, 30, tzinfo=plus_two),
    )

    assert [r.message for r in await store.due_reminders(now=NOW)] == ["offset"]
    assert await store.due_reminders(now=NOW - timedelta(hours=1)) == []


@pytest.mark.anyio
async def test_scheduled_messages_flow(store: BotStore) -> None:
    scheduled = await store.add_scheduled_message(
        guild_id="g1",
        channel_id="c1",
        user_id="u1",
        message="standup",
        send_at=NOW - timedelta(seconds=5),
    )
    assert scheduled.sent is False

    due = await store.due_scheduled_messages(now=NOW)
    assert [(item.schedule_id, item.guild_id) for item in due] == [
        (scheduled.schedule_id, "g1")
    ]

    await store.mark_scheduled_message_sent(scheduled.schedule_id)
    assert await store.due_scheduled_messages(now=NOW) == []


@pytest.mark.anyio
async def test_afk_set_replace_and_clear(store: BotStore) -> None:
    await store.set_afk(user_id="u1", message="lunch", since=NOW)
    await store.set_afk(user_id="u1", message="meeting", since=NOW + timedelta(minutes=5))

    status = await store.get_afk(user_id="u1")
    assert status is not None
    assert status.message == "meeting"
    assert status.since == NOW + timedelta(minutes=5)

    assert await store.clear_afk(user_id="u1") is True
    assert await store.clear_afk(user_id="u1") is False
    assert await store.get_afk(user_id="u1") is None


@pytest.mark.anyio
async def test_deleted_messages_newest_first_and_pruned(store: BotStore) -> None:
    for index in range(3):
        await store.record_deleted_message(
            DeletedMessage(
                channel_id="c1",
                message_id=f"m{index}",
                author_id="u1",
                author_name="alice",
                content=f"oops {index}",
                deleted_at=NOW - timedelta(hours=30 - index * 10),
            )
        )
    await store.record_deleted_message(
        DeletedMessage(
            channel_id="c2",
            message_id="other",
            author_id="u2",
            author_name="bob",
            content="elsewhere",
            deleted_at=NOW,
        )
    )

    recent = await store.recent_deleted_messages(channel_id="c1", limit=2)
    assert [message.message_id for message in recent] == ["m2", "m1"]

    pruned = await store.prune_deleted_messages(older_than=timedelta(hours=24), now=NOW)
    assert pruned == 1
    remaining = await store.recent_deleted_messages(channel_id="c1", limit=15)
    assert [message.message_id for message in remaining] == ["m2", "m1"]


@pytest.mark.anyio
async def test_data_survives_reopen(tmp_path: Path) -> None:
    path = tmp_path / "bot.sqlite3"
    first = BotStore(path)
    await first.initialize()
    await first.set_afk(user_id="u1", message="away", since=NOW)
    await first.close()

    second = BotStore(path)
    await second.initialize()
    try:
        status = await second.get_afk(user_id="u1")
    finally:
        await second.close()

    assert status is not None and status.message == "away"
