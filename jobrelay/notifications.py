"""Persisted user notifications pushed to live connections."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .contracts import NotificationStatus, NotificationType, Principal, Role, utc_now
from .errors import ForbiddenError, NotFoundError
from .fanout import BaseFanout
from .persistence import CoordinationRepository, Notification

logger = logging.getLogger(__name__)

NOTIFICATION_EVENT = "notification"


class NotificationService:
    """Stores notifications and publishes them to the owner and to admins."""

    def __init__(self, repository: CoordinationRepository, fanout: BaseFanout) -> None:
        self._repository = repository
        self._fanout = fanout

    async def admin_ids(self) -> List[str]:
        return [u.id for u in await self._repository.list_users() if u.role == Role.ADMIN]

    async def publish(self, user_id: str, event_type: str, payload: Any = None) -> None:
        """Publish a frame to ``user_id`` and, unless they are one, every admin."""
        admins = await self.admin_ids()
        if user_id not in admins:
            await self._fanout.publish(user_id, event_type, payload)
        for admin_id in admins:
            await self._fanout.publish(admin_id, event_type, payload)

    async def notify(
        self,
        user_id: str,
        message: str,
        type: NotificationType | str = NotificationType.INFO,
    ) -> Optional[Notification]:
        """Persist and publish a notification.

        When the notification cannot be stored the raw payload is still
        published so connected clients see it; ``None`` is returned then.
        """
        type = NotificationType(type)
        notification = Notification(user_id=user_id, message=message, type=type)
        try:
            await self._repository.save_notification(notification)
        except Exception:
            logger.exception(f"Failed to store notification for user_id={user_id}")
            raw: Dict[str, Any] = {
                "message": message,
                "type": type.value,
                "userId": user_id,
                "createdAt": utc_now().isoformat(),
            }
            await self.publish(user_id, NOTIFICATION_EVENT, raw)
            return None

        await self.publish(user_id, NOTIFICATION_EVENT, notification)
        logger.debug(f"Notified user_id={user_id} type={type.value}")
        return notification

    async def list(
        self, principal: Principal, status: Optional[NotificationStatus | str] = None
    ) -> List[Notification]:
        notifications = await self._repository.list_notifications(principal.user_id)
        if status is not None:
            status = NotificationStatus(status)
            notifications = [n for n in notifications if n.status == status]
        return notifications

    async def unread_count(self, principal: Principal) -> int:
        return len(await self.list(principal, NotificationStatus.UNREAD))

    async def mark_read(
        self,
        principal: Principal,
        notification_id: str,
        status: NotificationStatus | str = NotificationStatus.READ,
    ) -> Notification:
        notification = await self._get_for(principal, notification_id)
        updated = notification.model_copy(update={"status": NotificationStatus(status)})
        await self._repository.save_notification(updated)
        return updated

    async def mark_all_read(self, principal: Principal) -> int:
        unread = await self.list(principal, NotificationStatus.UNREAD)
        for notification in unread:
            await self._repository.save_notification(
                notification.model_copy(update={"status": NotificationStatus.READ})
            )
        return len(unread)

    async def delete(self, principal: Principal, notification_id: str) -> None:
        await self._get_for(principal, notification_id)
        await self._repository.delete_notification(notification_id)

    async def _get_for(self, principal: Principal, notification_id: str) -> Notification:
        notification = await self._repository.get_notification(notification_id)
        if notification is None:
            raise NotFoundError("Notification not found", {"notification_id": notification_id})
        if not principal.can_act_on(notification.user_id):
            raise ForbiddenError("Notification belongs to another user")
        return notification
