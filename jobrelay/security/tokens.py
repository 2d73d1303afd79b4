"""Per-process single-use tokens and signed worker request verification."""

from __future__ import annotations

import hmac
import logging
import secrets
from datetime import datetime, timedelta
from typing import Callable, Mapping, Optional

from pydantic import BaseModel

from ..constants import (
    AUTOMATION_PERMISSION,
    HEADER_API_KEY,
    HEADER_SIGNATURE,
    HEADER_TIMESTAMP,
    HEADER_TOKEN,
    PROCESS_TOKEN_TTL_HOURS,
    SIGNATURE_FRESHNESS_SECONDS,
)
from ..contracts import WorkerIdentity, utc_now
from ..errors import AuthError, NotFoundError, ReplayError
from ..persistence import CoordinationRepository, ProcessToken
from .keys import ApiKeyAuthority
from .signing import signature_matches

logger = logging.getLogger(__name__)


class IssuedToken(BaseModel):
    token: str
    issued_at: datetime
    expires_at: datetime


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    value = headers.get(name)
    if value is None:
        value = headers.get(name.lower())
    return value


class TokenAuthority:
    """Binds worker requests to one process through a single-use token.

    A request is trusted only when it carries the API key, a fresh
    timestamp, an open token and an HMAC-SHA256 signature over the exact
    body bytes.
    """

    def __init__(
        self,
        repository: CoordinationRepository,
        *,
        api_key: str,
        shared_secret: str,
        api_keys: Optional[ApiKeyAuthority] = None,
        token_ttl_hours: int = PROCESS_TOKEN_TTL_HOURS,
        freshness_window_seconds: int = SIGNATURE_FRESHNESS_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._repository = repository
        self._api_key = api_key
        self._shared_secret = shared_secret
        self._api_keys = api_keys
        self._token_ttl = timedelta(hours=token_ttl_hours)
        self._freshness = timedelta(seconds=freshness_window_seconds)
        self._clock = clock

    @property
    def shared_secret(self) -> str:
        return self._shared_secret

    async def issue(self, user_id: str, process_id: str) -> IssuedToken:
        """Create a new token for ``process_id``, closing any open one."""
        now = self._clock()
        for existing in await self._repository.list_tokens(process_id):
            if not existing.is_complete:
                await self._repository.save_token(
                    existing.model_copy(update={"is_complete": True})
                )

        record = ProcessToken(
            token=secrets.token_hex(32),
            process_id=process_id,
            user_id=user_id,
            expires_at=now + self._token_ttl,
            created_at=now,
        )
        await self._repository.save_token(record)
        logger.info(f"Issued token for process_id={process_id} user_id={user_id}")
        return IssuedToken(token=record.token, issued_at=now, expires_at=record.expires_at)

    async def complete(self, token: str) -> None:
        """Mark ``token`` consumed. Completing twice is a no-op."""
        record = await self._repository.get_token(token)
        if record is None:
            raise NotFoundError("Unknown process token")
        if record.is_complete:
            return
        await self._repository.save_token(record.model_copy(update={"is_complete": True}))
        logger.info(f"Completed token for process_id={record.process_id}")

    async def complete_for_process(self, process_id: str) -> None:
        for record in await self._repository.list_tokens(process_id):
            if not record.is_complete:
                await self.complete(record.token)

    async def active_token(self, process_id: str) -> ProcessToken:
        """Open, unexpired token used to sign requests for ``process_id``."""
        now = self._clock()
        for record in reversed(await self._repository.list_tokens(process_id)):
            if not record.is_complete and record.expires_at > now:
                return record
        raise NotFoundError("No active token found for this process")

    async def verify(self, headers: Mapping[str, str], raw_body: bytes) -> WorkerIdentity:
        """Authenticate a worker request.

        Raises:
            AuthError: bad API key, token or signature.
            ReplayError: timestamp missing, malformed or outside the window.
        """
        api_key_id = await self._check_api_key(_header(headers, HEADER_API_KEY))
        self._check_timestamp(_header(headers, HEADER_TIMESTAMP))

        token = _header(headers, HEADER_TOKEN)
        if not token:
            raise AuthError("Missing authentication token")
        record = await self._repository.get_token(token)
        if record is None:
            raise AuthError("Invalid authentication token")
        if record.is_complete:
            raise AuthError("Process already completed")
        if self._clock() > record.expires_at:
            raise AuthError("Authentication token expired")

        if not signature_matches(raw_body, self._shared_secret, _header(headers, HEADER_SIGNATURE)):
            logger.warning(f"Signature mismatch for process_id={record.process_id}")
            raise AuthError("Invalid signature")

        return WorkerIdentity(
            user_id=record.user_id,
            process_id=record.process_id,
            token=record.token,
            verified_at=self._clock(),
            api_key_id=api_key_id,
        )

    async def _check_api_key(self, value: Optional[str]) -> Optional[str]:
        if not value:
            raise AuthError("Missing API key")
        if self._api_key and hmac.compare_digest(value, self._api_key):
            return None
        if self._api_keys is not None:
            record = await self._api_keys.verify(value, AUTOMATION_PERMISSION)
            return record.id
        raise AuthError("Invalid API key")

    def _check_timestamp(self, value: Optional[str]) -> None:
        if not value:
            raise ReplayError("Missing request timestamp")
        try:
            sent_ms = int(value)
        except ValueError:
            raise ReplayError("Malformed request timestamp") from None
        age_ms = self._clock().timestamp() * 1000 - sent_ms
        if age_ms > self._freshness.total_seconds() * 1000:
            raise ReplayError("Request expired", {"age_seconds": round(age_ms / 1000, 3)})
