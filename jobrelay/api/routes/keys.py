"""API key issuance, renewal and revocation."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from ...constants import AUTOMATION_APPLICATION, HEADER_API_KEY, REFRESH_API_KEY_PERMISSION
from ...contracts import Principal
from ...errors import ForbiddenError
from ..deps import Services, get_services, require_admin
from ..schemas import IssueKeyRequest

router = APIRouter(prefix="/api/api-keys", tags=["api-keys"])
logger = logging.getLogger(__name__)


@router.post("/renew")
async def renew_key(request: Request, services: Services = Depends(get_services)):
    """Swap the presented key for a fresh one; expired keys may renew themselves."""
    record = await services.api_keys.verify(
        request.headers.get(HEADER_API_KEY),
        REFRESH_API_KEY_PERMISSION,
        allow_expired=True,
    )
    if record.application != AUTOMATION_APPLICATION:
        raise ForbiddenError("Only automation keys can be renewed here")
    renewed = await services.api_keys.renew(record.id)
    return {
        "success": True,
        "apiKey": renewed.token,
        "expiresAt": renewed.expires_at.isoformat(),
    }


@router.post("")
async def issue_key(
    body: IssueKeyRequest,
    principal: Principal = Depends(require_admin),
    services: Services = Depends(get_services),
):
    record = await services.api_keys.issue(body.application, body.permissions, body.ttl_days)
    logger.info(f"Admin {principal.user_id} issued API key {record.id}")
    return JSONResponse(record.model_dump(mode="json"), status_code=status.HTTP_201_CREATED)


@router.delete("/{key_id}")
async def revoke_key(
    key_id: str,
    principal: Principal = Depends(require_admin),
    services: Services = Depends(get_services),
):
    record = await services.api_keys.revoke(key_id)
    logger.info(f"Admin {principal.user_id} revoked API key {record.id}")
    return {"success": True, "id": record.id}
