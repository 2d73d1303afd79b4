"""Notification service tests."""

import pytest

from jobrelay.contracts import NotificationStatus, NotificationType, Principal, Role
from jobrelay.errors import ForbiddenError, NotFoundError
from jobrelay.fanout import InMemoryFanout
from jobrelay.notifications import NotificationService
from jobrelay.persistence import InMemoryRepository, UserRecord


async def _service():
    repo = InMemoryRepository()
    await repo.save_user(UserRecord(id="admin-1", role=Role.ADMIN))
    await repo.save_user(UserRecord(id="user-1"))
    fanout = InMemoryFanout()
    return repo, fanout, NotificationService(repo, fanout)


class BrokenRepository(InMemoryRepository):
    async def save_notification(self, notification):
        raise RuntimeError("database is down")


@pytest.mark.asyncio
async def test_notify_persists_and_reaches_user_and_admins():
    repo, fanout, service = await _service()
    user_channel, _ = fanout.subscribe("user-1")
    admin_channel, _ = fanout.subscribe("admin-1")

    notification = await service.notify("user-1", "Matching done", "success")

    assert notification.type == NotificationType.SUCCESS
    assert [n.id for n in await repo.list_notifications("user-1")] == [notification.id]
    user_frame = await user_channel.get()
    admin_frame = await admin_channel.get()
    assert user_frame.event == admin_frame.event == "notification"
    assert user_frame.data["message"] == "Matching done"


@pytest.mark.asyncio
async def test_admin_receives_own_notification_once():
    _, fanout, service = await _service()
    admin_channel, _ = fanout.subscribe("admin-1")

    await service.notify("admin-1", "hello")
    assert admin_channel.pending() == 1


@pytest.mark.asyncio
async def test_storage_failure_still_publishes_raw_payload():
    repo = BrokenRepository()
    fanout = InMemoryFanout()
    service = NotificationService(repo, fanout)
    channel, _ = fanout.subscribe("user-1")

    assert await service.notify("user-1", "Process failed", NotificationType.ERROR) is None
    frame = await channel.get()
    assert frame.data["message"] == "Process failed"
    assert frame.data["type"] == "error"


@pytest.mark.asyncio
async def test_read_status_and_ownership():
    _, _, service = await _service()
    owner = Principal(user_id="user-1")
    stranger = Principal(user_id="user-2")
    admin = Principal(user_id="admin-1", role=Role.ADMIN)
    first = await service.notify("user-1", "one")
    second = await service.notify("user-1", "two")

    assert await service.unread_count(owner) == 2
    with pytest.raises(ForbiddenError):
        await service.mark_read(stranger, first.id)
    updated = await service.mark_read(owner, first.id)
    assert updated.status == NotificationStatus.READ
    assert await service.unread_count(owner) == 1

    assert await service.mark_all_read(owner) == 1
    assert await service.list(owner, "unread") == []

    await service.delete(admin, second.id)
    with pytest.raises(NotFoundError):
        await service.delete(owner, second.id)
    assert [n.id for n in await service.list(owner)] == [first.id]
