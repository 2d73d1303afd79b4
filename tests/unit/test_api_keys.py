"""Tests for application API keys."""

import pytest

from jobrelay.errors import AuthError, ForbiddenError, NotFoundError
from jobrelay.persistence import InMemoryRepository
from jobrelay.security import ApiKeyAuthority


@pytest.mark.asyncio
async def test_issue_and_verify_with_permission(clock):
    keys = ApiKeyAuthority(InMemoryRepository(), clock=clock)
    record = await keys.issue("automation", ["automation", "refresh-api-key", "automation"])

    assert record.permissions == ["automation", "refresh-api-key"]
    assert (record.expires_at - clock.now).days == 90
    verified = await keys.verify(record.token, "refresh-api-key")
    assert verified.id == record.id


@pytest.mark.asyncio
async def test_verify_failures_map_to_auth_and_forbidden(clock):
    keys = ApiKeyAuthority(InMemoryRepository(), clock=clock)
    record = await keys.issue("automation", ["automation"])

    with pytest.raises(AuthError):
        await keys.verify(None)
    with pytest.raises(AuthError):
        await keys.verify("unknown")
    with pytest.raises(ForbiddenError):
        await keys.verify(record.token, "refresh-api-key")

    await keys.revoke(record.id)
    with pytest.raises(ForbiddenError, match="revoked"):
        await keys.verify(record.token)


@pytest.mark.asyncio
async def test_expired_key_is_unauthorized_unless_allowed(clock):
    keys = ApiKeyAuthority(InMemoryRepository(), clock=clock)
    record = await keys.issue("automation", ["refresh-api-key"], ttl_days=1)
    clock.advance(2 * 24 * 3600)

    with pytest.raises(AuthError) as exc_info:
        await keys.verify(record.token)
    assert type(exc_info.value) is AuthError
    assert exc_info.value.status_code == 401

    assert (await keys.verify(record.token, allow_expired=True)).id == record.id


@pytest.mark.asyncio
async def test_renew_replaces_token_and_extends_expiry(clock):
    keys = ApiKeyAuthority(InMemoryRepository(), clock=clock)
    record = await keys.issue("automation", ["automation"], ttl_days=1)
    clock.advance(3600)

    renewed = await keys.renew(record.id)
    assert renewed.id == record.id
    assert renewed.token != record.token
    assert renewed.expires_at > record.expires_at
    with pytest.raises(AuthError):
        await keys.verify(record.token)

    await keys.revoke(record.id)
    with pytest.raises(AuthError):
        await keys.renew(record.id)
    with pytest.raises(NotFoundError):
        await keys.renew("missing")


@pytest.mark.asyncio
async def test_outbound_key_renews_expired_key(clock):
    keys = ApiKeyAuthority(InMemoryRepository(), clock=clock)
    with pytest.raises(NotFoundError):
        await keys.outbound_key()

    record = await keys.issue("automation", ["automation"])
    clock.advance(91 * 24 * 3600)

    current = await keys.outbound_key()
    assert current.id == record.id
    assert current.token != record.token
    assert current.expires_at > clock.now
