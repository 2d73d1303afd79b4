"""Tests for process tokens and signed worker request verification."""

import pytest

from jobrelay.errors import AuthError, NotFoundError, ReplayError
from jobrelay.persistence import InMemoryRepository
from jobrelay.security import (
    ApiKeyAuthority,
    TokenAuthority,
    canonical_json,
    signed_headers,
    timestamp_ms,
)

API_KEY = "shared-api-key"
SECRET = "shared-secret"


def _authority(clock, repo=None, **kwargs) -> TokenAuthority:
    return TokenAuthority(
        repo or InMemoryRepository(),
        api_key=kwargs.pop("api_key", API_KEY),
        shared_secret=SECRET,
        clock=clock,
        **kwargs,
    )


def _headers(clock, body, token, api_key=API_KEY, age_seconds=0.0):
    return signed_headers(
        body,
        api_key=api_key,
        token=token,
        secret=SECRET,
        timestamp=timestamp_ms(clock.now.timestamp() - age_seconds),
    )


@pytest.mark.asyncio
async def test_valid_token_verifies_until_completed(clock):
    tokens = _authority(clock)
    issued = await tokens.issue("user-1", "proc-1")
    assert len(issued.token) == 64

    body = canonical_json({"progress": 40})
    identity = await tokens.verify(_headers(clock, body, issued.token), body)
    assert identity.user_id == "user-1"
    assert identity.process_id == "proc-1"

    await tokens.complete(issued.token)
    await tokens.complete(issued.token)  # idempotent
    with pytest.raises(AuthError):
        await tokens.verify(_headers(clock, body, issued.token), body)


@pytest.mark.asyncio
async def test_mutated_body_fails_verification(clock):
    tokens = _authority(clock)
    issued = await tokens.issue("user-1", "proc-1")
    body = canonical_json({"status": "completed"})
    headers = _headers(clock, body, issued.token)

    with pytest.raises(AuthError, match="Invalid signature"):
        await tokens.verify(headers, canonical_json({"status": "failed"}))


@pytest.mark.asyncio
async def test_stale_timestamp_is_rejected_even_with_valid_signature(clock):
    tokens = _authority(clock)
    issued = await tokens.issue("user-1", "proc-1")
    body = canonical_json({"progress": 1})

    with pytest.raises(ReplayError):
        await tokens.verify(_headers(clock, body, issued.token, age_seconds=301), body)

    identity = await tokens.verify(_headers(clock, body, issued.token, age_seconds=299), body)
    assert identity.process_id == "proc-1"


@pytest.mark.asyncio
async def test_missing_or_malformed_timestamp_is_a_replay_error(clock):
    tokens = _authority(clock)
    issued = await tokens.issue("user-1", "proc-1")
    body = b"{}"
    headers = _headers(clock, body, issued.token)

    del headers["X-Timestamp"]
    with pytest.raises(ReplayError):
        await tokens.verify(headers, body)

    headers["X-Timestamp"] = "yesterday"
    with pytest.raises(ReplayError):
        await tokens.verify(headers, body)


@pytest.mark.asyncio
async def test_api_key_and_token_checks(clock):
    tokens = _authority(clock)
    issued = await tokens.issue("user-1", "proc-1")
    body = b"{}"

    with pytest.raises(AuthError, match="Invalid API key"):
        await tokens.verify(_headers(clock, body, issued.token, api_key="wrong"), body)

    headers = _headers(clock, body, issued.token)
    del headers["X-API-Key"]
    with pytest.raises(AuthError, match="Missing API key"):
        await tokens.verify(headers, body)

    with pytest.raises(AuthError, match="Invalid authentication token"):
        await tokens.verify(_headers(clock, body, "f" * 64), body)


@pytest.mark.asyncio
async def test_lowercase_header_names_are_accepted(clock):
    tokens = _authority(clock)
    issued = await tokens.issue("user-1", "proc-1")
    body = b'{"a":1}'
    headers = {k.lower(): v for k, v in _headers(clock, body, issued.token).items()}

    identity = await tokens.verify(headers, body)
    assert identity.token == issued.token


@pytest.mark.asyncio
async def test_expired_token_is_rejected(clock):
    tokens = _authority(clock)
    issued = await tokens.issue("user-1", "proc-1")
    clock.advance(24 * 3600 + 1)
    body = b"{}"

    with pytest.raises(AuthError, match="expired"):
        await tokens.verify(_headers(clock, body, issued.token), body)


@pytest.mark.asyncio
async def test_issuing_again_completes_the_previous_token(clock):
    tokens = _authority(clock)
    first = await tokens.issue("user-1", "proc-1")
    second = await tokens.issue("user-1", "proc-1")
    body = b"{}"

    with pytest.raises(AuthError):
        await tokens.verify(_headers(clock, body, first.token), body)
    assert (await tokens.active_token("proc-1")).token == second.token


@pytest.mark.asyncio
async def test_active_token_and_unknown_completion(clock):
    tokens = _authority(clock)
    with pytest.raises(NotFoundError):
        await tokens.active_token("proc-1")
    with pytest.raises(NotFoundError):
        await tokens.complete("missing")

    await tokens.issue("user-1", "proc-1")
    await tokens.complete_for_process("proc-1")
    with pytest.raises(NotFoundError):
        await tokens.active_token("proc-1")


@pytest.mark.asyncio
async def test_capability_key_with_automation_permission_is_accepted(clock):
    repo = InMemoryRepository()
    keys = ApiKeyAuthority(repo, clock=clock)
    automation = await keys.issue("automation", ["automation"])
    reporting = await keys.issue("reporting", ["read"])
    tokens = _authority(clock, repo, api_key="", api_keys=keys)
    issued = await tokens.issue("user-1", "proc-1")
    body = b"{}"

    identity = await tokens.verify(_headers(clock, body, issued.token, api_key=automation.token), body)
    assert identity.api_key_id == automation.id

    with pytest.raises(AuthError):
        await tokens.verify(_headers(clock, body, issued.token, api_key=reporting.token), body)
