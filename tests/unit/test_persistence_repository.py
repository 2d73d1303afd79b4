from datetime import timedelta

import pytest

from jobrelay.contracts import EventName, NotificationStatus, ProcessStatus, Role, utc_now
from jobrelay.persistence import (
    ApiKey,
    InMemoryRepository,
    Notification,
    ProcessEvent,
    ProcessRecord,
    ProcessToken,
    SQLiteRepository,
    UserRecord,
)


@pytest.fixture(params=["inmemory", "sqlite"])
def repo(request, tmp_path):
    if request.param == "inmemory":
        yield InMemoryRepository()
    else:
        repository = SQLiteRepository(tmp_path / "relay.db")
        yield repository
        repository.close()


@pytest.mark.asyncio
async def test_process_crud_and_filters(repo):
    now = utc_now()
    older = ProcessRecord(user_id="u1", status=ProcessStatus.FAILED, created_at=now - timedelta(hours=1))
    newer = ProcessRecord(user_id="u1", details={"agents": ["a1"]}, created_at=now)
    foreign = ProcessRecord(user_id="u2", status=ProcessStatus.PROCESSING, created_at=now)
    for process in (older, newer, foreign):
        await repo.save_process(process)

    assert [p.id for p in await repo.list_processes(user_id="u1")] == [newer.id, older.id]
    active = await repo.list_processes(statuses=[ProcessStatus.PENDING, ProcessStatus.PROCESSING])
    assert {p.id for p in active} == {newer.id, foreign.id}

    loaded = await repo.get_process(newer.id)
    assert loaded.details == {"agents": ["a1"]}
    await repo.save_process(loaded.model_copy(update={"progress": 75}))
    assert (await repo.get_process(newer.id)).progress == 75
    assert await repo.get_process("missing") is None


@pytest.mark.asyncio
async def test_tokens_and_events_cascade_on_delete(repo):
    process = ProcessRecord(user_id="u1")
    await repo.save_process(process)
    expires = utc_now() + timedelta(hours=24)
    first = ProcessToken(token="a" * 64, process_id=process.id, user_id="u1", expires_at=expires)
    second = ProcessToken(
        token="b" * 64,
        process_id=process.id,
        user_id="u1",
        expires_at=expires,
        created_at=first.created_at + timedelta(seconds=1),
    )
    await repo.save_token(first)
    await repo.save_token(second)
    await repo.save_token(first.model_copy(update={"is_complete": True}))

    tokens = await repo.list_tokens(process.id)
    assert [t.token for t in tokens] == [first.token, second.token]
    assert tokens[0].is_complete

    names = [EventName.PROGRESS_TRACKER, EventName.VERIFICATION_CODE, EventName.FORM_RESPONSE]
    events = [
        ProcessEvent(process_id=process.id, event_name=name, status="ok", process_stage="s", thread_id="t1")
        for name in names
    ]
    for event in events:
        await repo.add_event(event)

    assert [e.id for e in await repo.list_events(process.id)] == [e.id for e in events]
    forms = await repo.list_events(process.id, [EventName.VERIFICATION_CODE, EventName.FORM_RESPONSE])
    assert [e.event_name for e in forms] == names[1:]

    await repo.delete_process(process.id)
    assert await repo.get_process(process.id) is None
    assert await repo.list_tokens(process.id) == []
    assert await repo.list_events(process.id) == []


@pytest.mark.asyncio
async def test_notifications_api_keys_and_users(repo):
    note = Notification(user_id="u1", message="hello")
    await repo.save_notification(note)
    await repo.save_notification(Notification(user_id="u2", message="other"))
    await repo.save_notification(note.model_copy(update={"status": NotificationStatus.READ}))

    mine = await repo.list_notifications("u1")
    assert [n.status for n in mine] == [NotificationStatus.READ]
    assert len(await repo.list_notifications()) == 2
    await repo.delete_notification(note.id)
    assert await repo.get_notification(note.id) is None

    key = ApiKey(application="automation", token="k" * 64, expires_at=utc_now(), permissions=["automation"])
    await repo.save_api_key(key)
    assert (await repo.find_api_key_by_token("k" * 64)).id == key.id
    assert [k.id for k in await repo.list_api_keys("automation")] == [key.id]
    assert await repo.list_api_keys("reporting") == []

    await repo.save_user(UserRecord(id="root", role=Role.ADMIN))
    assert (await repo.get_user("root")).role == Role.ADMIN
    assert [u.id for u in await repo.list_users()] == ["root"]
