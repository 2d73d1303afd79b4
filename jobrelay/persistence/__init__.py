"""Persistence layer for jobrelay."""

from __future__ import annotations

import os
from typing import Optional

from ..config import JobRelayConfig, load_config
from .inmemory import InMemoryRepository
from .models import (
    ApiKey,
    Notification,
    ProcessEvent,
    ProcessRecord,
    ProcessToken,
    UserRecord,
)
from .repository import CoordinationRepository
from .sqlite import SQLiteRepository


def get_repository(
    database_url: Optional[str] = None, config: Optional[JobRelayConfig] = None
) -> CoordinationRepository:
    """Factory function to obtain a coordination repository.

    The backend is selected based on ``database_url`` which can be provided
    explicitly, via environment variable ``JOBRELAY_DATABASE_URL`` or
    ``DATABASE_URL``, or from loaded configuration. When no database is
    configured, an in-memory repository is returned.

    Every call builds a new repository; the application keeps the one it
    uses on its service container.
    """

    if database_url is None:
        config = config or load_config()
        database_url = (
            os.getenv("JOBRELAY_DATABASE_URL")
            or os.getenv("DATABASE_URL")
            or config.database_url
        )

    if not database_url:
        return InMemoryRepository()

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        return SQLiteRepository(path)
    raise ValueError(f"Unsupported database backend: {database_url}")


__all__ = [
    "ApiKey",
    "CoordinationRepository",
    "InMemoryRepository",
    "Notification",
    "ProcessEvent",
    "ProcessRecord",
    "ProcessToken",
    "SQLiteRepository",
    "UserRecord",
    "get_repository",
]
