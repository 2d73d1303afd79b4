"""Progress events, active forms and answers sent back to the worker."""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends

from ...contracts import Principal
from ...dispatch import CommandKind
from ..deps import Services, current_principal, get_services
from ..schemas import FormAnswer

router = APIRouter(prefix="/api", tags=["forms"])


@router.get("/process-progress")
async def process_progress(
    event_name: Optional[str] = None,
    principal: Principal = Depends(current_principal),
    services: Services = Depends(get_services),
):
    """Events recorded for the caller's active process, oldest first."""
    process = await services.machine.resolve_active(principal)
    events = await services.ingestion.list_events(process.id, event_name)
    return {
        "process": process.model_dump(mode="json"),
        "events": [e.model_dump(mode="json") for e in events],
    }


@router.get("/process-progress/forms")
async def active_forms(
    principal: Principal = Depends(current_principal),
    services: Services = Depends(get_services),
):
    forms = await services.ingestion.active_forms_for(principal)
    return {"forms": [f.model_dump(mode="json") for f in forms]}


async def _answer(
    kind: CommandKind, body: FormAnswer, principal: Principal, services: Services
) -> Dict[str, Any]:
    result = await services.dispatcher.execute(kind, principal, body.model_dump(exclude_none=True))
    return {"success": True, "response": result.worker_response}


@router.post("/forms/verification-code")
async def submit_verification_code(
    body: FormAnswer,
    principal: Principal = Depends(current_principal),
    services: Services = Depends(get_services),
):
    return await _answer(CommandKind.SUBMIT_VERIFICATION_CODE, body, principal, services)


@router.post("/forms/verification-option")
async def submit_verification_option(
    body: FormAnswer,
    principal: Principal = Depends(current_principal),
    services: Services = Depends(get_services),
):
    return await _answer(CommandKind.SUBMIT_VERIFICATION_OPTION, body, principal, services)


@router.post("/forms/confirmation")
async def submit_confirmation(
    body: FormAnswer,
    principal: Principal = Depends(current_principal),
    services: Services = Depends(get_services),
):
    return await _answer(CommandKind.SUBMIT_CONFIRMATION, body, principal, services)


@router.post("/credentials")
async def submit_credential(
    payload: Dict[str, Any] = Body(...),
    principal: Principal = Depends(current_principal),
    services: Services = Depends(get_services),
):
    result = await services.dispatcher.execute(CommandKind.SUBMIT_CREDENTIAL, principal, payload)
    return result.worker_response


@router.post("/transfers/retransfer-amount")
async def retransfer_amount(
    payload: Dict[str, Any] = Body(...),
    principal: Principal = Depends(current_principal),
    services: Services = Depends(get_services),
):
    result = await services.dispatcher.execute(CommandKind.RETRANSFER_AMOUNT, principal, payload)
    return result.worker_response
