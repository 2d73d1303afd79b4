"""Process lifecycle endpoints for web clients."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from ...contracts import Principal
from ...dispatch import CommandKind
from ..deps import Services, current_principal, get_services
from ..schemas import StartProcessRequest, StatusChangeRequest

router = APIRouter(prefix="/api/processes", tags=["processes"])
logger = logging.getLogger(__name__)


@router.post("", status_code=status.HTTP_202_ACCEPTED)
async def start_process(
    body: StartProcessRequest,
    principal: Principal = Depends(current_principal),
    services: Services = Depends(get_services),
):
    """Create a pending process and ask the worker to start it."""
    result = await services.dispatcher.submit(CommandKind.START, principal, {"details": body.details})
    return {
        "message": "Process start initiated",
        "process": result.process.model_dump(mode="json"),
    }


@router.get("")
async def list_processes(
    principal: Principal = Depends(current_principal),
    services: Services = Depends(get_services),
):
    processes = await services.machine.list_for(principal)
    return {"processes": [p.model_dump(mode="json") for p in processes]}


@router.get("/{process_id}")
async def get_process(
    process_id: str,
    principal: Principal = Depends(current_principal),
    services: Services = Depends(get_services),
):
    process = await services.machine.get_for(principal, process_id)
    return process.model_dump(mode="json")


@router.put("/{process_id}/status")
async def change_status(
    process_id: str,
    body: StatusChangeRequest,
    principal: Principal = Depends(current_principal),
    services: Services = Depends(get_services),
):
    """Move a process to pending, on_hold or failed."""
    process = await services.machine.client_transition(principal, process_id, body.status)
    return {
        "message": f"Process status updated to {process.status.value}",
        "process": process.model_dump(mode="json"),
    }


@router.delete("/{process_id}")
async def delete_process(
    process_id: str,
    principal: Principal = Depends(current_principal),
    services: Services = Depends(get_services),
):
    await services.machine.delete(principal, process_id)
    return {"message": "Process deleted successfully"}


@router.post("/{process_id}/terminate")
async def terminate_process(
    process_id: str,
    principal: Principal = Depends(current_principal),
    services: Services = Depends(get_services),
):
    result = await services.dispatcher.execute(
        CommandKind.TERMINATE, principal, {"process_id": process_id}
    )
    return result.model_dump(mode="json")


@router.post("/{process_id}/restart")
async def restart_process(
    process_id: str,
    principal: Principal = Depends(current_principal),
    services: Services = Depends(get_services),
):
    result = await services.dispatcher.submit(
        CommandKind.RESTART, principal, {"process_id": process_id}
    )
    return JSONResponse(result.model_dump(mode="json"), status_code=status.HTTP_202_ACCEPTED)


@router.post("/{process_id}/success")
async def mark_success(
    process_id: str,
    principal: Principal = Depends(current_principal),
    services: Services = Depends(get_services),
):
    result = await services.dispatcher.execute(
        CommandKind.MARK_SUCCESS, principal, {"process_id": process_id}
    )
    return result.model_dump(mode="json")
