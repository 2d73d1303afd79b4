"""SQLite implementation of the coordination repository."""

from __future__ import annotations

import asyncio
import sqlite3
from pathlib import Path
from typing import Any, Iterable, Optional

from ..contracts import EventName, ProcessStatus
from .models import (
    ApiKey,
    Notification,
    ProcessEvent,
    ProcessRecord,
    ProcessToken,
    UserRecord,
)
from .repository import CoordinationRepository


class SQLiteRepository(CoordinationRepository):
    """Persist coordination state using SQLite.

    Each table keeps the columns used for lookups and filtering next to a
    ``body`` column holding the full JSON record.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.executescript(
            """
            CREATE TABLE IF NOT EXISTS processes (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                status TEXT NOT NULL,
                created_at TEXT NOT NULL,
                body TEXT NOT NULL
            );
            CREATE TABLE IF NOT EXISTS process_tokens (
                token TEXT PRIMARY KEY,
                process_id TEXT NOT NULL,
                created_at TEXT NOT NULL,
                body TEXT NOT NULL
            );
            CREATE TABLE IF NOT EXISTS process_events (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT UNIQUE NOT NULL,
                process_id TEXT NOT NULL,
                event_name TEXT NOT NULL,
                body TEXT NOT NULL
            );
            CREATE TABLE IF NOT EXISTS notifications (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                created_at TEXT NOT NULL,
                body TEXT NOT NULL
            );
            CREATE TABLE IF NOT EXISTS api_keys (
                id TEXT PRIMARY KEY,
                application TEXT NOT NULL,
                token TEXT UNIQUE NOT NULL,
                created_at TEXT NOT NULL,
                body TEXT NOT NULL
            );
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                body TEXT NOT NULL
            );
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        self._conn.commit()

    def _execute_many(self, statements: list[tuple[str, tuple[Any, ...]]]) -> None:
        cur = self._conn.cursor()
        try:
            for query, params in statements:
                cur.execute(query, params)
            self._conn.commit()
        except sqlite3.Error:
            self._conn.rollback()
            raise

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchall()

    def close(self) -> None:
        self._conn.close()

    # ------------------------------------------------------------------
    # Processes
    async def save_process(self, process: ProcessRecord) -> None:
        await asyncio.to_thread(
            self._execute,
            "INSERT OR REPLACE INTO processes (id, user_id, status, created_at, body) VALUES (?, ?, ?, ?, ?)",
            process.id,
            process.user_id,
            process.status.value,
            process.created_at.isoformat(),
            process.model_dump_json(),
        )

    async def get_process(self, process_id: str) -> ProcessRecord | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT body FROM processes WHERE id = ?", process_id
        )
        return ProcessRecord.model_validate_json(row["body"]) if row else None

    async def list_processes(
        self,
        user_id: Optional[str] = None,
        statuses: Optional[Iterable[ProcessStatus]] = None,
    ) -> list[ProcessRecord]:
        query = "SELECT body FROM processes WHERE 1 = 1"
        params: list[Any] = []
        if user_id is not None:
            query += " AND user_id = ?"
            params.append(user_id)
        if statuses is not None:
            values = [ProcessStatus(s).value for s in statuses]
            if not values:
                return []
            query += f" AND status IN ({', '.join('?' for _ in values)})"
            params.extend(values)
        query += " ORDER BY created_at DESC"
        rows = await asyncio.to_thread(self._fetchall, query, *params)
        return [ProcessRecord.model_validate_json(r["body"]) for r in rows]

    async def delete_process(self, process_id: str) -> None:
        await asyncio.to_thread(
            self._execute_many,
            [
                ("DELETE FROM process_events WHERE process_id = ?", (process_id,)),
                ("DELETE FROM process_tokens WHERE process_id = ?", (process_id,)),
                ("DELETE FROM processes WHERE id = ?", (process_id,)),
            ],
        )

    # ------------------------------------------------------------------
    # Tokens
    async def save_token(self, token: ProcessToken) -> None:
        await asyncio.to_thread(
            self._execute,
            "INSERT OR REPLACE INTO process_tokens (token, process_id, created_at, body) VALUES (?, ?, ?, ?)",
            token.token,
            token.process_id,
            token.created_at.isoformat(),
            token.model_dump_json(),
        )

    async def get_token(self, token: str) -> ProcessToken | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT body FROM process_tokens WHERE token = ?", token
        )
        return ProcessToken.model_validate_json(row["body"]) if row else None

    async def list_tokens(self, process_id: str) -> list[ProcessToken]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT body FROM process_tokens WHERE process_id = ? ORDER BY created_at",
            process_id,
        )
        return [ProcessToken.model_validate_json(r["body"]) for r in rows]

    # ------------------------------------------------------------------
    # Events
    async def add_event(self, event: ProcessEvent) -> None:
        await asyncio.to_thread(
            self._execute,
            "INSERT INTO process_events (id, process_id, event_name, body) VALUES (?, ?, ?, ?)",
            event.id,
            event.process_id,
            event.event_name.value,
            event.model_dump_json(),
        )

    async def list_events(
        self,
        process_id: str,
        event_names: Optional[Iterable[EventName]] = None,
    ) -> list[ProcessEvent]:
        query = "SELECT body FROM process_events WHERE process_id = ?"
        params: list[Any] = [process_id]
        if event_names is not None:
            values = [EventName(n).value for n in event_names]
            if not values:
                return []
            query += f" AND event_name IN ({', '.join('?' for _ in values)})"
            params.extend(values)
        query += " ORDER BY seq"
        rows = await asyncio.to_thread(self._fetchall, query, *params)
        return [ProcessEvent.model_validate_json(r["body"]) for r in rows]

    # ------------------------------------------------------------------
    # Notifications
    async def save_notification(self, notification: Notification) -> None:
        await asyncio.to_thread(
            self._execute,
            "INSERT OR REPLACE INTO notifications (id, user_id, created_at, body) VALUES (?, ?, ?, ?)",
            notification.id,
            notification.user_id,
            notification.created_at.isoformat(),
            notification.model_dump_json(),
        )

    async def get_notification(self, notification_id: str) -> Notification | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT body FROM notifications WHERE id = ?", notification_id
        )
        return Notification.model_validate_json(row["body"]) if row else None

    async def list_notifications(self, user_id: Optional[str] = None) -> list[Notification]:
        if user_id is None:
            rows = await asyncio.to_thread(
                self._fetchall, "SELECT body FROM notifications ORDER BY created_at DESC"
            )
        else:
            rows = await asyncio.to_thread(
                self._fetchall,
                "SELECT body FROM notifications WHERE user_id = ? ORDER BY created_at DESC",
                user_id,
            )
        return [Notification.model_validate_json(r["body"]) for r in rows]

    async def delete_notification(self, notification_id: str) -> None:
        await asyncio.to_thread(
            self._execute, "DELETE FROM notifications WHERE id = ?", notification_id
        )

    # ------------------------------------------------------------------
    # API keys
    async def save_api_key(self, api_key: ApiKey) -> None:
        await asyncio.to_thread(
            self._execute,
            "INSERT OR REPLACE INTO api_keys (id, application, token, created_at, body) VALUES (?, ?, ?, ?, ?)",
            api_key.id,
            api_key.application,
            api_key.token,
            api_key.created_at.isoformat(),
            api_key.model_dump_json(),
        )

    async def get_api_key(self, key_id: str) -> ApiKey | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT body FROM api_keys WHERE id = ?", key_id
        )
        return ApiKey.model_validate_json(row["body"]) if row else None

    async def find_api_key_by_token(self, token: str) -> ApiKey | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT body FROM api_keys WHERE token = ?", token
        )
        return ApiKey.model_validate_json(row["body"]) if row else None

    async def list_api_keys(self, application: Optional[str] = None) -> list[ApiKey]:
        if application is None:
            rows = await asyncio.to_thread(
                self._fetchall, "SELECT body FROM api_keys ORDER BY created_at DESC"
            )
        else:
            rows = await asyncio.to_thread(
                self._fetchall,
                "SELECT body FROM api_keys WHERE application = ? ORDER BY created_at DESC",
                application,
            )
        return [ApiKey.model_validate_json(r["body"]) for r in rows]

    # ------------------------------------------------------------------
    # Users
    async def save_user(self, user: UserRecord) -> None:
        await asyncio.to_thread(
            self._execute,
            "INSERT OR REPLACE INTO users (id, body) VALUES (?, ?)",
            user.id,
            user.model_dump_json(),
        )

    async def get_user(self, user_id: str) -> UserRecord | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT body FROM users WHERE id = ?", user_id
        )
        return UserRecord.model_validate_json(row["body"]) if row else None

    async def list_users(self) -> list[UserRecord]:
        rows = await asyncio.to_thread(self._fetchall, "SELECT body FROM users")
        return [UserRecord.model_validate_json(r["body"]) for r in rows]
