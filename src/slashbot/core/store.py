"""SQLite-backed persistence for reminders, schedules, AFK and snipes.

All sqlite work runs on a dedicated single-thread executor so the event loop
never blocks on disk I/O and the connection never crosses threads.
"""

from __future__ import annotations

import asyncio
import sqlite3
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Optional

from .sqlite_utils import connect_sqlite, from_iso, to_iso, utc_now

STORE_SCHEMA_VERSION = 1


@dataclass(frozen=True)
class Reminder:
    reminder_id: int
    user_id: str
    channel_id: str
    message: str
    remind_at: datetime
    created_at: datetime


@dataclass(frozen=True)
class ScheduledMessage:
    schedule_id: int
    guild_id: Optional[str]
    channel_id: str
    user_id: str
    message: str
    send_at: datetime
    sent: bool = False


@dataclass(frozen=True)
class AfkStatus:
    user_id: str
    message: str
    since: datetime


@dataclass(frozen=True)
class DeletedMessage:
    channel_id: str
    message_id: str
    author_id: str
    author_name: str
    content: str
    deleted_at: datetime


class BotStore:
    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="slashbot-store"
        )
        self._connection: Optional[sqlite3.Connection] = None

    @property
    def path(self) -> Path:
        return self._db_path

    async def initialize(self) -> None:
        await self._run(self._ensure_initialized_sync)

    async def close(self) -> None:
        await self._run(self._close_sync)
        self._executor.shutdown(wait=True)

    # Reminders

    async def add_reminder(
        self,
        *,
        user_id: str,
        channel_id: str,
        message: str,
        remind_at: datetime,
    ) -> Reminder:
        return await self._run(
            self._add_reminder_sync, user_id, channel_id, message, remind_at
        )

    async def due_reminders(self, *, now: Optional[datetime] = None) -> list[Reminder]:
        return await self._run(self._due_reminders_sync, now or utc_now())

    async def complete_reminder(self, reminder_id: int) -> None:
        await self._run(self._complete_reminder_sync, reminder_id)

    async def list_reminders(self, *, user_id: str) -> list[Reminder]:
        return await self._run(self._list_reminders_sync, user_id)

    # Scheduled messages

    async def add_scheduled_message(
        self,
        *,
        guild_id: Optional[str],
        channel_id: str,
        user_id: str,
        message: str,
        send_at: datetime,
    ) -> ScheduledMessage:
        return await self._run(
            self._add_scheduled_sync, guild_id, channel_id, user_id, message, send_at
        )

    async def due_scheduled_messages(
        self, *, now: Optional[datetime] = None
    ) -> list[ScheduledMessage]:
        return await self._run(self._due_scheduled_sync, now or utc_now())

    async def mark_scheduled_message_sent(self, schedule_id: int) -> None:
        await self._run(self._mark_scheduled_sent_sync, schedule_id)

    # AFK

    async def set_afk(
        self, *, user_id: str, message: str, since: Optional[datetime] = None
    ) -> AfkStatus:
        return await self._run(self._set_afk_sync, user_id, message, since or utc_now())

    async def get_afk(self, *, user_id: str) -> Optional[AfkStatus]:
        return await self._run(self._get_afk_sync, user_id)

    async def clear_afk(self, *, user_id: str) -> bool:
        return await self._run(self._clear_afk_sync, user_id)

    # Deleted messages

    async def record_deleted_message(self, message: DeletedMessage) -> None:
        await self._run(self._record_deleted_sync, message)

    async def recent_deleted_messages(
        self, *, channel_id: str, limit: int = 1
    ) -> list[DeletedMessage]:
        return await self._run(self._recent_deleted_sync, channel_id, max(limit, 0))

    async def prune_deleted_messages(
        self, *, older_than: timedelta, now: Optional[datetime] = None
    ) -> int:
        cutoff = (now or utc_now()) - older_than
        return await self._run(self._prune_deleted_sync, cutoff)

    async def _run(self, func: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, func, *args)

    def _connection_sync(self) -> sqlite3.Connection:
        if self._connection is None:
            self._connection = connect_sqlite(self._db_path)
            self._ensure_schema(self._connection)
        return self._connection

    def _ensure_initialized_sync(self) -> None:
        self._connection_sync()

    def _close_sync(self) -> None:
        if self._connection is not None:
            self._connection.close()
            self._connection = None

    def _ensure_schema(self, conn: sqlite3.Connection) -> None:
        with conn:
            conn.execute(
                "CREATE TABLE IF NOT EXISTS schema_info (version INTEGER NOT NULL)"
            )
            row = conn.execute(
                "SELECT version FROM schema_info ORDER BY version DESC LIMIT 1"
            ).fetchone()
            if row is None:
                conn.execute(
                    "INSERT INTO schema_info(version) VALUES (?)",
                    (STORE_SCHEMA_VERSION,),
                )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS reminders (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    channel_id TEXT NOT NULL,
                    message TEXT NOT NULL,
                    remind_at TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    completed INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_reminders_due
                    ON reminders(completed, remind_at)
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS scheduled_messages (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    guild_id TEXT,
                    channel_id TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    message TEXT NOT NULL,
                    send_at TEXT NOT NULL,
                    sent INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS afk_status (
                    user_id TEXT PRIMARY KEY,
                    message TEXT NOT NULL,
                    since TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS deleted_messages (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    channel_id TEXT NOT NULL,
                    message_id TEXT NOT NULL,
                    author_id TEXT NOT NULL,
                    author_name TEXT NOT NULL,
                    content TEXT NOT NULL,
                    deleted_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_deleted_messages_channel
                    ON deleted_messages(channel_id, deleted_at)
                """
            )

    def _reminder_from_row(self, row: sqlite3.Row) -> Reminder:
        return Reminder(
            reminder_id=int(row["id"]),
            user_id=str(row["user_id"]),
            channel_id=str(row["channel_id"]),
            message=str(row["message"]),
            remind_at=from_iso(row["remind_at"]) or utc_now(),
            created_at=from_iso(row["created_at"]) or utc_now(),
        )

    def _add_reminder_sync(
        self, user_id: str, channel_id: str, message: str, remind_at: datetime
    ) -> Reminder:
        conn = self._connection_sync()
        created_at = utc_now()
        with conn:
            cursor = conn.execute(
                """
                INSERT INTO reminders (user_id, channel_id, message, remind_at, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (user_id, channel_id, message, to_iso(remind_at), to_iso(created_at)),
            )
        row = conn.execute(
            "SELECT * FROM reminders WHERE id = ?", (cursor.lastrowid,)
        ).fetchone()
        return self._reminder_from_row(row)

    def _due_reminders_sync(self, now: datetime) -> list[Reminder]:
        conn = self._connection_sync()
        rows = conn.execute(
            """
            SELECT * FROM reminders
             WHERE completed = 0 AND remind_at <= ?
             ORDER BY remind_at ASC, id ASC
            """,
            (to_iso(now),),
        ).fetchall()
        return [self._reminder_from_row(row) for row in rows]

    def _complete_reminder_sync(self, reminder_id: int) -> None:
        conn = self._connection_sync()
        with conn:
            conn.execute(
                "UPDATE reminders SET completed = 1 WHERE id = ?", (reminder_id,)
            )

    def _list_reminders_sync(self, user_id: str) -> list[Reminder]:
        conn = self._connection_sync()
        rows = conn.execute(
            """
            SELECT * FROM reminders
             WHERE completed = 0 AND user_id = ?
             ORDER BY remind_at ASC, id ASC
            """,
            (user_id,),
        ).fetchall()
        return [self._reminder_from_row(row) for row in rows]

    def _scheduled_from_row(self, row: sqlite3.Row) -> ScheduledMessage:
        return ScheduledMessage(
            schedule_id=int(row["id"]),
            guild_id=row["guild_id"] if isinstance(row["guild_id"], str) else None,
            channel_id=str(row["channel_id"]),
            user_id=str(row["user_id"]),
            message=str(row["message"]),
            send_at=from_iso(row["send_at"]) or utc_now(),
            sent=bool(row["sent"]),
        )

    def _add_scheduled_sync(
        self,
        guild_id: Optional[str],
        channel_id: str,
        user_id: str,
        message: str,
        send_at: datetime,
    ) -> ScheduledMessage:
        conn = self._connection_sync()
        with conn:
            cursor = conn.execute(
                """
                INSERT INTO scheduled_messages (guild_id, channel_id, user_id, message, send_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (guild_id, channel_id, user_id, message, to_iso(send_at)),
            )
        row = conn.execute(
            "SELECT * FROM scheduled_messages WHERE id = ?", (cursor.lastrowid,)
        ).fetchone()
        return self._scheduled_from_row(row)

    def _due_scheduled_sync(self, now: datetime) -> list[ScheduledMessage]:
        conn = self._connection_sync()
        rows = conn.execute(
            """
            SELECT * FROM scheduled_messages
             WHERE sent = 0 AND send_at <= ?
             ORDER BY send_at ASC, id ASC
            """,
            (to_iso(now),),
        ).fetchall()
        return [self._scheduled_from_row(row) for row in rows]

    def _mark_scheduled_sent_sync(self, schedule_id: int) -> None:
        conn = self._connection_sync()
        with conn:
            conn.execute(
                "UPDATE scheduled_messages SET sent = 1 WHERE id = ?", (schedule_id,)
            )

    def _set_afk_sync(self, user_id: str, message: str, since: datetime) -> AfkStatus:
        conn = self._connection_sync()
        with conn:
            conn.execute(
                """
                INSERT INTO afk_status (user_id, message, since)
                VALUES (?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    message=excluded.message,
                    since=excluded.since
                """,
                (user_id, message, to_iso(since)),
            )
        return AfkStatus(user_id=user_id, message=message, since=from_iso(to_iso(since)) or since)

    def _get_afk_sync(self, user_id: str) -> Optional[AfkStatus]:
        conn = self._connection_sync()
        row = conn.execute(
            "SELECT * FROM afk_status WHERE user_id = ?", (user_id,)
        ).fetchone()
        if row is None:
            return None
        return AfkStatus(
            user_id=str(row["user_id"]),
            message=str(row["message"]),
            since=from_iso(row["since"]) or utc_now(),
        )

    def _clear_afk_sync(self, user_id: str) -> bool:
        conn = self._connection_sync()
        with conn:
            cursor = conn.execute("DELETE FROM afk_status WHERE user_id = ?", (user_id,))
        return cursor.rowcount > 0

    def _record_deleted_sync(self, message: DeletedMessage) -> None:
        conn = self._connection_sync()
        with conn:
            conn.execute(
                """
                INSERT INTO deleted_messages (
                    channel_id, message_id, author_id, author_name, content, deleted_at
                )
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    message.channel_id,
                    message.message_id,
                    message.author_id,
                    message.author_name,
                    message.content,
                    to_iso(message.deleted_at),
                ),
            )

    def _recent_deleted_sync(self, channel_id: str, limit: int) -> list[DeletedMessage]:
        conn = self._connection_sync()
        rows = conn.execute(
            """
            SELECT * FROM deleted_messages
             WHERE channel_id = ?
             ORDER BY deleted_at DESC, id DESC
             LIMIT ?
            """,
            (channel_id, limit),
        ).fetchall()
        return [
            DeletedMessage(
                channel_id=str(row["channel_id"]),
                message_id=str(row["message_id"]),
                author_id=str(row["author_id"]),
                author_name=str(row["author_name"]),
                content=str(row["content"]),
                deleted_at=from_iso(row["deleted_at"]) or utc_now(),
            )
            for row in rows
        ]

    def _prune_deleted_sync(self, cutoff: datetime) -> int:
        conn = self._connection_sync()
        with conn:
            cursor = conn.execute(
                "DELETE FROM deleted_messages WHERE deleted_at < ?", (to_iso(cutoff),)
            )
        return cursor.rowcount
