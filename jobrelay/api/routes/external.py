"""Inbound endpoints called by the automation worker.

Every route requires the four signature headers; the verified token
decides which process and user the request acts on.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, status
from fastapi.responses import JSONResponse

from ...contracts import WorkerIdentity
from ..deps import Services, get_services, worker_identity
from ..schemas import (
    ProgressReport,
    StatusUpdate,
    TerminationReport,
    WorkerEvent,
    WorkerForm,
    WorkerNotification,
)

router = APIRouter(prefix="/api/external/in", tags=["external"])
logger = logging.getLogger(__name__)


@router.patch("/progress")
async def report_progress(
    body: ProgressReport,
    identity: WorkerIdentity = Depends(worker_identity),
    services: Services = Depends(get_services),
):
    process = await services.ingestion.report_progress(
        identity.process_id, progress=body.progress, status=body.status
    )
    return {
        "success": True,
        "message": "Process updated successfully",
        "process": process.model_dump(mode="json"),
    }


@router.post("/events")
async def dispatch_event(
    body: WorkerEvent,
    identity: WorkerIdentity = Depends(worker_identity),
    services: Services = Depends(get_services),
):
    event = await services.ingestion.dispatch(
        identity.process_id,
        identity.user_id,
        body.event_name,
        body.status,
        body.process_stage,
        body.data,
        thread_stage=body.thread_stage,
        thread_id=body.thread_id,
    )
    return JSONResponse(
        {"message": "Event dispatched successfully", "event": event.model_dump(mode="json")},
        status_code=status.HTTP_201_CREATED,
    )


@router.post("/terminate")
async def terminate(
    body: Optional[TerminationReport] = None,
    identity: WorkerIdentity = Depends(worker_identity),
    services: Services = Depends(get_services),
):
    process = await services.ingestion.report_termination(identity, body.reason if body else None)
    return {
        "success": True,
        "message": "Process terminated successfully",
        "process_id": process.id,
        "status": process.status.value,
    }


@router.post("/notifications")
async def notify(
    body: WorkerNotification,
    identity: WorkerIdentity = Depends(worker_identity),
    services: Services = Depends(get_services),
):
    result = await services.ingestion.report_notification(
        identity,
        body.message,
        body.type,
        options=body.options,
        timeout=body.timeout,
        thread_id=body.thread_id,
    )
    notification = result["notification"]
    form = result["form"]
    return {
        "success": True,
        "notification": notification.model_dump(mode="json") if notification else None,
        "form": form.model_dump(mode="json") if form else None,
    }


@router.post("/forms")
async def request_form(
    body: WorkerForm,
    identity: WorkerIdentity = Depends(worker_identity),
    services: Services = Depends(get_services),
):
    event = await services.ingestion.report_form(
        identity,
        body.options,
        body.type,
        thread_id=body.thread_id,
        message=body.message,
        timeout=body.timeout,
    )
    return {
        "success": True,
        "message": "Form options submitted successfully",
        "event": event.model_dump(mode="json"),
    }


@router.post("/status")
async def status_update(
    body: StatusUpdate,
    identity: WorkerIdentity = Depends(worker_identity),
    services: Services = Depends(get_services),
):
    event = await services.ingestion.report_status_update(identity, body.kind, body.id, body.status)
    return {"success": True, "event": event.model_dump(mode="json")}


@router.post("/confirm-transfer")
async def confirm_transfer(
    data: Dict[str, Any] = Body(...),
    identity: WorkerIdentity = Depends(worker_identity),
    services: Services = Depends(get_services),
):
    await services.ingestion.request_transfer_confirmation(identity, data)
    return {"success": True, "message": "Transfer confirmation requested"}
