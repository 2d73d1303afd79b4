"""Generic command endpoint for the match family of commands."""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, status
from fastapi.responses import JSONResponse

from ...contracts import Principal
from ...dispatch import FIRE_AND_FORGET, CommandKind, MATCH_COMMANDS
from ...errors import ValidationError
from ..deps import Services, current_principal, get_services

router = APIRouter(prefix="/api/commands", tags=["commands"])


@router.post("/{kind}")
async def run_command(
    kind: str,
    payload: Optional[Dict[str, Any]] = Body(default=None),
    principal: Principal = Depends(current_principal),
    services: Services = Depends(get_services),
):
    """Run a rematch or refilter command; the worker call happens in the background."""
    try:
        command = CommandKind(kind.replace("-", "_"))
    except ValueError:
        command = None
    if command not in MATCH_COMMANDS:
        raise ValidationError(
            f"Unsupported command: {kind}",
            {"validValues": sorted(k.value for k in MATCH_COMMANDS)},
        )
    result = await services.dispatcher.submit(command, principal, payload or {})
    code = status.HTTP_202_ACCEPTED if command in FIRE_AND_FORGET else status.HTTP_200_OK
    return JSONResponse(result.model_dump(mode="json"), status_code=code)
