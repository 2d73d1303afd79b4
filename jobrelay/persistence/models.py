"""Data models for persisted coordination state."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from ..contracts import (
    EventName,
    NotificationStatus,
    NotificationType,
    ProcessStatus,
    Role,
    utc_now,
)


def new_id() -> str:
    return str(uuid.uuid4())


class ProcessRecord(BaseModel):
    """One automation run."""

    id: str = Field(default_factory=new_id)
    user_id: str
    status: ProcessStatus = ProcessStatus.PENDING
    progress: int = 0
    stage: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class ProcessToken(BaseModel):
    """Single-use credential binding a process/user pair."""

    token: str
    process_id: str
    user_id: str
    expires_at: datetime
    is_complete: bool = False
    created_at: datetime = Field(default_factory=utc_now)


class ProcessEvent(BaseModel):
    """Worker-reported event. Never mutated after it is written."""

    id: str = Field(default_factory=new_id)
    process_id: str
    event_name: EventName
    status: str
    process_stage: str
    thread_stage: Optional[str] = None
    thread_id: Optional[str] = None
    data: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)


class Notification(BaseModel):
    id: str = Field(default_factory=new_id)
    user_id: str
    message: str
    type: NotificationType = NotificationType.INFO
    status: NotificationStatus = NotificationStatus.UNREAD
    created_at: datetime = Field(default_factory=utc_now)


class ApiKey(BaseModel):
    """Application-scoped API key with named permissions."""

    id: str = Field(default_factory=new_id)
    application: str
    token: str
    permissions: list[str] = Field(default_factory=list)
    expires_at: datetime
    is_revoked: bool = False
    created_at: datetime = Field(default_factory=utc_now)


class UserRecord(BaseModel):
    """Narrow view of a user owned by the external user store."""

    id: str
    role: Role = Role.MANAGEMENT
