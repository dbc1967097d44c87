from __future__ import annotations

import sqlite3
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

import aiosqlite
import structlog

from ..models import AlertRecord, GroupModerationConfig, ViolationRecord
from .base import StorageError, StorageGateway

logger = structlog.get_logger(__name__)


CREATE_GROUP_SETTINGS = """
CREATE TABLE IF NOT EXISTS group_settings (
    chat_id INTEGER PRIMARY KEY,
    text_enabled INTEGER NOT NULL,
    image_enabled INTEGER NOT NULL,
    video_enabled INTEGER NOT NULL
)
"""


CREATE_GROUP_TERMS = """
CREATE TABLE IF NOT EXISTS group_terms (
    chat_id INTEGER NOT NULL,
    term TEXT NOT NULL,
    PRIMARY KEY (chat_id, term)
)
"""


CREATE_VIOLATIONS = """
CREATE TABLE IF NOT EXISTS user_violations (
    user_id INTEGER NOT NULL,
    chat_id INTEGER NOT NULL,
    count INTEGER NOT NULL DEFAULT 0,
    last_warned_at INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (user_id, chat_id)
)
"""


CREATE_ALERTS = """
CREATE TABLE IF NOT EXISTS alert_messages (
    chat_id INTEGER PRIMARY KEY,
    message TEXT NOT NULL,
    interval_minutes INTEGER NOT NULL,
    last_sent_at INTEGER NOT NULL DEFAULT 0
)
"""


class SQLiteStorage(StorageGateway):
    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._conn: Optional[aiosqlite.Connection] = None

    async def connect(self) -> None:
        try:
            self._conn = await aiosqlite.connect(self._path)
            self._conn.row_factory = aiosqlite.Row
            await self._conn.execute("PRAGMA journal_mode=WAL")
            for statement in (CREATE_GROUP_SETTINGS, CREATE_GROUP_TERMS, CREATE_VIOLATIONS, CREATE_ALERTS):
                await self._conn.execute(statement)
            await self._conn.commit()
        except sqlite3.Error as exc:
            raise StorageError(f"cannot open {self._path}: {exc}") from exc
        logger.info("sqlite_connected", path=str(self._path))

    async def disconnect(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[aiosqlite.Connection]:
        if self._conn is None:
            raise StorageError("storage is not connected")
        try:
            yield self._conn
        except sqlite3.Error as exc:
            logger.error("sqlite_error", error=str(exc))
            raise StorageError(str(exc)) from exc

    async def get_group_config(self, chat_id: int) -> Optional[GroupModerationConfig]:
        async with self._connection() as conn:
            cursor = await conn.execute("SELECT * FROM group_settings WHERE chat_id = ?", (chat_id,))
            row = await cursor.fetchone()
            await cursor.close()
        if row is None:
            return None
        return GroupModerationConfig(
            chat_id=row["chat_id"],
            text_enabled=bool(row["text_enabled"]),
            image_enabled=bool(row["image_enabled"]),
            video_enabled=bool(row["video_enabled"]),
        )

    async def put_group_config(self, config: GroupModerationConfig) -> None:
        async with self._connection() as conn:
            await conn.execute(
                """
                INSERT INTO group_settings (chat_id, text_enabled, image_enabled, video_enabled)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(chat_id) DO UPDATE SET
                    text_enabled=excluded.text_enabled,
                    image_enabled=excluded.image_enabled,
                    video_enabled=excluded.video_enabled
                """,
                (
                    config.chat_id,
                    int(config.text_enabled),
                    int(config.image_enabled),
                    int(config.video_enabled),
                ),
            )
            await conn.commit()
        logger.info("sqlite_put_group_config", chat_id=config.chat_id)

    async def list_terms(self, chat_id: int) -> list[str]:
        async with self._connection() as conn:
            cursor = await conn.execute(
                "SELECT term FROM group_terms WHERE chat_id = ? ORDER BY term", (chat_id,)
            )
            rows = await cursor.fetchall()
            await cursor.close()
        return [row["term"] for row in rows]

    async def add_term(self, chat_id: int, term: str) -> bool:
        async with self._connection() as conn:
            cursor = await conn.execute(
                "INSERT OR IGNORE INTO group_terms (chat_id, term) VALUES (?, ?)", (chat_id, term)
            )
            inserted = cursor.rowcount > 0
            await cursor.close()
            await conn.commit()
        logger.info("sqlite_add_term", chat_id=chat_id, inserted=inserted)
        return inserted

    async def remove_term(self, chat_id: int, term: str) -> bool:
        async with self._connection() as conn:
            cursor = await conn.execute(
                "DELETE FROM group_terms WHERE chat_id = ? AND term = ?", (chat_id, term)
            )
            removed = cursor.rowcount > 0
            await cursor.close()
            await conn.commit()
        logger.info("sqlite_remove_term", chat_id=chat_id, removed=removed)
        return removed

    async def get_violation(self, user_id: int, chat_id: int) -> Optional[ViolationRecord]:
        async with self._connection() as conn:
            cursor = await conn.execute(
                "SELECT * FROM user_violations WHERE user_id = ? AND chat_id = ?",
                (user_id, chat_id),
            )
            row = await cursor.fetchone()
            await cursor.close()
        if row is None:
            return None
        return ViolationRecord(
            user_id=row["user_id"],
            chat_id=row["chat_id"],
            count=row["count"],
            last_warned_at=row["last_warned_at"],
        )

    async def upsert_violation(self, record: ViolationRecord) -> None:
        async with self._connection() as conn:
            await conn.execute(
                """
                INSERT INTO user_violations (user_id, chat_id, count, last_warned_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(user_id, chat_id) DO UPDATE SET
                    count=excluded.count,
                    last_warned_at=excluded.last_warned_at
                """,
                (record.user_id, record.chat_id, record.count, record.last_warned_at),
            )
            await conn.commit()

    async def list_alerts(self) -> list[AlertRecord]:
        async with self._connection() as conn:
            cursor = await conn.execute("SELECT * FROM alert_messages")
            rows = await cursor.fetchall()
            await cursor.close()
        return [self._alert_from_row(row) for row in rows]

    async def get_alert(self, chat_id: int) -> Optional[AlertRecord]:
        async with self._connection() as conn:
            cursor = await conn.execute("SELECT * FROM alert_messages WHERE chat_id = ?", (chat_id,))
            row = await cursor.fetchone()
            await cursor.close()
        return self._alert_from_row(row) if row is not None else None

    async def upsert_alert(self, alert: AlertRecord) -> None:
        async with self._connection() as conn:
            await conn.execute(
                """
                INSERT INTO alert_messages (chat_id, message, interval_minutes, last_sent_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(chat_id) DO UPDATE SET
                    message=excluded.message,
                    interval_minutes=excluded.interval_minutes,
                    last_sent_at=excluded.last_sent_at
                """,
                (alert.chat_id, alert.message, alert.interval_minutes, alert.last_sent_at),
            )
            await conn.commit()
        logger.info("sqlite_upsert_alert", chat_id=alert.chat_id, interval=alert.interval_minutes)

    async def delete_alert(self, chat_id: int) -> bool:
        async with self._connection() as conn:
            cursor = await conn.execute("DELETE FROM alert_messages WHERE chat_id = ?", (chat_id,))
            removed = cursor.rowcount > 0
            await cursor.close()
            await conn.commit()
        logger.info("sqlite_delete_alert", chat_id=chat_id, removed=removed)
        return removed

    async def mark_alert_sent(self, chat_id: int, sent_at: int) -> None:
        async with self._connection() as conn:
            await conn.execute(
                "UPDATE alert_messages SET last_sent_at = ? WHERE chat_id = ?", (sent_at, chat_id)
            )
            await conn.commit()

    @staticmethod
    def _alert_from_row(row: aiosqlite.Row) -> AlertRecord:
        return AlertRecord(
            chat_id=row["chat_id"],
            message=row["message"],
            interval_minutes=row["interval_minutes"],
            last_sent_at=row["last_sent_at"],
        )
