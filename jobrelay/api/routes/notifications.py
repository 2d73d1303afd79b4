"""Notification inbox endpoints."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends

from ...contracts import NotificationStatus, Principal
from ...dispatch import CommandKind
from ...errors import ValidationError
from ..deps import Services, current_principal, get_services, require_admin
from ..schemas import NotificationStatusRequest, NotifyRequest

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


def _status(value: Optional[str]) -> Optional[NotificationStatus]:
    if value is None:
        return None
    try:
        return NotificationStatus(value)
    except ValueError:
        raise ValidationError(
            "Invalid notification status",
            {"validValues": [s.value for s in NotificationStatus]},
        ) from None


@router.get("")
async def list_notifications(
    status: Optional[str] = None,
    principal: Principal = Depends(current_principal),
    services: Services = Depends(get_services),
):
    notifications = await services.notifications.list(principal, _status(status))
    return {"notifications": [n.model_dump(mode="json") for n in notifications]}


@router.get("/count")
async def unread_count(
    principal: Principal = Depends(current_principal),
    services: Services = Depends(get_services),
):
    return {"count": await services.notifications.unread_count(principal)}


@router.post("")
async def notify(
    body: NotifyRequest,
    principal: Principal = Depends(require_admin),
    services: Services = Depends(get_services),
):
    result = await services.dispatcher.execute(
        CommandKind.NOTIFY_ALL, principal, body.model_dump(exclude_none=True)
    )
    notification = result.notification
    return {
        "success": True,
        "notification": notification.model_dump(mode="json") if notification else None,
    }


@router.patch("/read-all")
async def mark_all_read(
    principal: Principal = Depends(current_principal),
    services: Services = Depends(get_services),
):
    updated = await services.notifications.mark_all_read(principal)
    return {"success": True, "updated": updated}


@router.patch("/{notification_id}")
async def mark_read(
    notification_id: str,
    body: Optional[NotificationStatusRequest] = None,
    principal: Principal = Depends(current_principal),
    services: Services = Depends(get_services),
):
    target = _status(body.status if body else NotificationStatus.READ.value)
    notification = await services.notifications.mark_read(principal, notification_id, target)
    return notification.model_dump(mode="json")


@router.delete("/{notification_id}")
async def delete_notification(
    notification_id: str,
    principal: Principal = Depends(current_principal),
    services: Services = Depends(get_services),
):
    await services.notifications.delete(principal, notification_id)
    return {"success": True}
