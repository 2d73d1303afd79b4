"""Repository abstraction for coordination state persistence."""

from __future__ import annotations

from typing import Iterable, Optional, Protocol

from ..contracts import EventName, ProcessStatus
from .models import (
    ApiKey,
    Notification,
    ProcessEvent,
    ProcessRecord,
    ProcessToken,
    UserRecord,
)


class CoordinationRepository(Protocol):
    """Protocol for persistence backends."""

    # processes
    async def save_process(self, process: ProcessRecord) -> None:
        """Insert or replace a process record."""

    async def get_process(self, process_id: str) -> ProcessRecord | None:
        """Retrieve a process by id."""

    async def list_processes(
        self,
        user_id: Optional[str] = None,
        statuses: Optional[Iterable[ProcessStatus]] = None,
    ) -> list[ProcessRecord]:
        """Return processes, newest first."""

    async def delete_process(self, process_id: str) -> None:
        """Delete a process together with its tokens and events."""

    # tokens
    async def save_token(self, token: ProcessToken) -> None:
        """Insert or replace a token."""

    async def get_token(self, token: str) -> ProcessToken | None:
        """Retrieve a token record."""

    async def list_tokens(self, process_id: str) -> list[ProcessToken]:
        """Return all tokens issued for a process, oldest first."""

    # events
    async def add_event(self, event: ProcessEvent) -> None:
        """Append a worker event."""

    async def list_events(
        self,
        process_id: str,
        event_names: Optional[Iterable[EventName]] = None,
    ) -> list[ProcessEvent]:
        """Return events of a process in creation order."""

    # notifications
    async def save_notification(self, notification: Notification) -> None:
        """Insert or replace a notification."""

    async def get_notification(self, notification_id: str) -> Notification | None:
        """Retrieve a notification."""

    async def list_notifications(self, user_id: Optional[str] = None) -> list[Notification]:
        """Return notifications, newest first; all users when ``user_id`` is None."""

    async def delete_notification(self, notification_id: str) -> None:
        """Remove a notification."""

    # api keys
    async def save_api_key(self, api_key: ApiKey) -> None:
        """Insert or replace an API key."""

    async def get_api_key(self, key_id: str) -> ApiKey | None:
        """Retrieve an API key by id."""

    async def find_api_key_by_token(self, token: str) -> ApiKey | None:
        """Retrieve an API key by its secret value."""

    async def list_api_keys(self, application: Optional[str] = None) -> list[ApiKey]:
        """Return API keys, newest first."""

    # users
    async def save_user(self, user: UserRecord) -> None:
        """Insert or replace a user view."""

    async def get_user(self, user_id: str) -> UserRecord | None:
        """Retrieve a user view."""

    async def list_users(self) -> list[UserRecord]:
        """Return every known user."""
