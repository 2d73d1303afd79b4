"""Core enums and identity contracts for jobrelay."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ProcessStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    ON_HOLD = "on_hold"
    COMPLETED = "completed"
    SEM_COMPLETED = "sem_completed"
    SUCCESS = "success"
    FAILED = "failed"

    def is_terminal(self) -> bool:
        return self in (ProcessStatus.COMPLETED, ProcessStatus.FAILED)


ACTIVE_STATUSES = (ProcessStatus.PENDING, ProcessStatus.PROCESSING)


class EventName(str, Enum):
    PROGRESS_TRACKER = "process_tracker"
    VERIFICATION_CODE = "verification_code"
    VERIFICATION_OPTIONS = "verification_options"
    CONFIRMATION_DIALOG = "confirmation_dialog"
    FORM_RESPONSE = "form_response"
    MATCHES_STATUS = "matches_status"
    TRANSFER_STATUS = "transfer_status"

    def is_form(self) -> bool:
        return self in FORM_EVENTS


FORM_EVENTS = frozenset(
    {
        EventName.VERIFICATION_CODE,
        EventName.VERIFICATION_OPTIONS,
        EventName.CONFIRMATION_DIALOG,
    }
)


class FormType(str, Enum):
    """Kind of form the worker asks the client to show."""

    VERIFICATION_METHOD = "verification_method"
    VERIFICATION = "verification"


# Verification methods a client may be offered.
VERIFICATION_OPTION_TYPES = ("tfa", "phone number verification", "email", "sms")


class NotificationType(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class NotificationStatus(str, Enum):
    READ = "read"
    UNREAD = "unread"


class Role(str, Enum):
    ADMIN = "admin"
    MANAGEMENT = "management"


class Principal(BaseModel):
    """Authenticated client identity."""

    user_id: str
    role: Role = Role.MANAGEMENT

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    def can_act_on(self, owner_id: str) -> bool:
        """Owner OR admin."""
        return self.is_admin or self.user_id == owner_id


class WorkerIdentity(BaseModel):
    """Result of a successful signed worker request verification."""

    user_id: str
    process_id: str
    token: str
    verified_at: datetime = Field(default_factory=utc_now)
    api_key_id: Optional[str] = None
