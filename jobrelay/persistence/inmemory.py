"""In-memory implementation of the coordination repository."""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional

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


class InMemoryRepository(CoordinationRepository):
    """Store coordination state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Records are copied on the way in and
    out so callers never share state with the store.
    """

    def __init__(self) -> None:
        self._processes: Dict[str, ProcessRecord] = {}
        self._tokens: Dict[str, ProcessToken] = {}
        self._events: List[ProcessEvent] = []
        self._notifications: Dict[str, Notification] = {}
        self._api_keys: Dict[str, ApiKey] = {}
        self._users: Dict[str, UserRecord] = {}

    # ------------------------------------------------------------------
    async def save_process(self, process: ProcessRecord) -> None:
        self._processes[process.id] = process.model_copy(deep=True)

    async def get_process(self, process_id: str) -> ProcessRecord | None:
        process = self._processes.get(process_id)
        return process.model_copy(deep=True) if process else None

    async def list_processes(
        self,
        user_id: Optional[str] = None,
        statuses: Optional[Iterable[ProcessStatus]] = None,
    ) -> list[ProcessRecord]:
        wanted = set(statuses) if statuses is not None else None
        result = [
            p.model_copy(deep=True)
            for p in self._processes.values()
            if (user_id is None or p.user_id == user_id)
            and (wanted is None or p.status in wanted)
        ]
        result.sort(key=lambda p: p.created_at, reverse=True)
        return result

    async def delete_process(self, process_id: str) -> None:
        self._processes.pop(process_id, None)
        self._tokens = {
            k: t for k, t in self._tokens.items() if t.process_id != process_id
        }
        self._events = [e for e in self._events if e.process_id != process_id]

    # ------------------------------------------------------------------
    async def save_token(self, token: ProcessToken) -> None:
        self._tokens[token.token] = token.model_copy()

    async def get_token(self, token: str) -> ProcessToken | None:
        record = self._tokens.get(token)
        return record.model_copy() if record else None

    async def list_tokens(self, process_id: str) -> list[ProcessToken]:
        tokens = [t.model_copy() for t in self._tokens.values() if t.process_id == process_id]
        tokens.sort(key=lambda t: t.created_at)
        return tokens

    # ------------------------------------------------------------------
    async def add_event(self, event: ProcessEvent) -> None:
        self._events.append(event.model_copy(deep=True))

    async def list_events(
        self,
        process_id: str,
        event_names: Optional[Iterable[EventName]] = None,
    ) -> list[ProcessEvent]:
        wanted = set(event_names) if event_names is not None else None
        return [
            e.model_copy(deep=True)
            for e in self._events
            if e.process_id == process_id and (wanted is None or e.event_name in wanted)
        ]

    # ------------------------------------------------------------------
    async def save_notification(self, notification: Notification) -> None:
        self._notifications[notification.id] = notification.model_copy()

    async def get_notification(self, notification_id: str) -> Notification | None:
        record = self._notifications.get(notification_id)
        return record.model_copy() if record else None

    async def list_notifications(self, user_id: Optional[str] = None) -> list[Notification]:
        result = [
            n.model_copy()
            for n in self._notifications.values()
            if user_id is None or n.user_id == user_id
        ]
        result.sort(key=lambda n: n.created_at, reverse=True)
        return result

    async def delete_notification(self, notification_id: str) -> None:
        self._notifications.pop(notification_id, None)

    # ------------------------------------------------------------------
    async def save_api_key(self, api_key: ApiKey) -> None:
        self._api_keys[api_key.id] = api_key.model_copy(deep=True)

    async def get_api_key(self, key_id: str) -> ApiKey | None:
        record = self._api_keys.get(key_id)
        return record.model_copy(deep=True) if record else None

    async def find_api_key_by_token(self, token: str) -> ApiKey | None:
        for record in self._api_keys.values():
            if record.token == token:
                return record.model_copy(deep=True)
        return None

    async def list_api_keys(self, application: Optional[str] = None) -> list[ApiKey]:
        result = [
            k.model_copy(deep=True)
            for k in self._api_keys.values()
            if application is None or k.application == application
        ]
        result.sort(key=lambda k: k.created_at, reverse=True)
        return result

    # ------------------------------------------------------------------
    async def save_user(self, user: UserRecord) -> None:
        self._users[user.id] = user.model_copy()

    async def get_user(self, user_id: str) -> UserRecord | None:
        record = self._users.get(user_id)
        return record.model_copy() if record else None

    async def list_users(self) -> list[UserRecord]:
        return [u.model_copy() for u in self._users.values()]
