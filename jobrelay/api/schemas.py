"""Request bodies accepted by the HTTP layer."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class StartProcessRequest(BaseModel):
    details: Dict[str, Any] = Field(default_factory=dict)


class StatusChangeRequest(BaseModel):
    status: str


class FormAnswer(BaseModel):
    model_config = ConfigDict(extra="allow")

    thread_id: str
    process_id: Optional[str] = None


class NotifyRequest(BaseModel):
    message: str
    type: str = "info"
    user_id: Optional[str] = None


class NotificationStatusRequest(BaseModel):
    status: str = "read"


class ProgressReport(BaseModel):
    progress: Optional[int] = None
    status: Optional[str] = None


class WorkerEvent(BaseModel):
    event_name: str
    status: str
    process_stage: str
    thread_stage: Optional[str] = None
    thread_id: Optional[str] = None
    data: Optional[Dict[str, Any]] = None


class TerminationReport(BaseModel):
    reason: Optional[str] = None


class WorkerForm(BaseModel):
    options: Any = None
    type: Optional[str] = None
    thread_id: Optional[str] = None
    message: Optional[str] = None
    timeout: Optional[float] = None


class WorkerNotification(BaseModel):
    message: str
    type: Optional[str] = None
    options: List[str] = Field(default_factory=list)
    timeout: Optional[float] = None
    thread_id: Optional[str] = None


class StatusUpdate(BaseModel):
    kind: str
    id: str
    status: str


class IssueKeyRequest(BaseModel):
    application: str
    permissions: List[str] = Field(default_factory=list)
    ttl_days: Optional[int] = None
