"""Application API keys carrying named permissions."""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from ..constants import API_KEY_TTL_DAYS, AUTOMATION_APPLICATION
from ..contracts import utc_now
from ..errors import AuthError, ForbiddenError, NotFoundError
from ..persistence import ApiKey, CoordinationRepository

logger = logging.getLogger(__name__)


class ApiKeyAuthority:
    """Issues, verifies, renews and revokes application API keys.

    Unlike process tokens these keys are not bound to a process; they prove
    which application is calling and what it may do.
    """

    def __init__(
        self,
        repository: CoordinationRepository,
        ttl_days: int = API_KEY_TTL_DAYS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._repository = repository
        self._ttl = timedelta(days=ttl_days)
        self._clock = clock

    async def issue(
        self,
        application: str,
        permissions: Iterable[str],
        ttl_days: Optional[int] = None,
    ) -> ApiKey:
        ttl = timedelta(days=ttl_days) if ttl_days is not None else self._ttl
        now = self._clock()
        api_key = ApiKey(
            application=application,
            token=secrets.token_hex(32),
            permissions=sorted(set(permissions)),
            expires_at=now + ttl,
            created_at=now,
        )
        await self._repository.save_api_key(api_key)
        logger.info(f"Issued API key {api_key.id} for application={application}")
        return api_key

    async def verify(
        self,
        api_key: Optional[str],
        required_permission: Optional[str] = None,
        allow_expired: bool = False,
    ) -> ApiKey:
        """Return the key record or raise.

        Raises:
            AuthError: key missing, unknown or expired.
            ForbiddenError: key revoked or lacking ``required_permission``.
        """
        if not api_key:
            raise AuthError("Missing API key")

        record = await self._repository.find_api_key_by_token(api_key)
        if record is None:
            raise AuthError("Invalid API key")
        if record.is_revoked:
            raise ForbiddenError("API key has been revoked", {"key_id": record.id})
        if not allow_expired and self._clock() > record.expires_at:
            raise AuthError(
                "API key has expired",
                {"key_id": record.id, "application": record.application, "expired": True},
            )
        if required_permission and required_permission not in record.permissions:
            raise ForbiddenError(
                f"Missing required permission: {required_permission}",
                {"key_id": record.id, "application": record.application},
            )
        return record

    async def renew(self, key_id: str) -> ApiKey:
        record = await self._repository.get_api_key(key_id)
        if record is None:
            raise NotFoundError("API key not found")
        if record.is_revoked:
            raise AuthError("Cannot renew a revoked API key")
        renewed = record.model_copy(
            update={
                "token": secrets.token_hex(32),
                "expires_at": self._clock() + self._ttl,
            }
        )
        await self._repository.save_api_key(renewed)
        logger.info(f"Renewed API key {key_id} for application={record.application}")
        return renewed

    async def revoke(self, key_id: str) -> ApiKey:
        record = await self._repository.get_api_key(key_id)
        if record is None:
            raise NotFoundError("API key not found")
        revoked = record.model_copy(update={"is_revoked": True})
        await self._repository.save_api_key(revoked)
        logger.info(f"Revoked API key {key_id}")
        return revoked

    async def outbound_key(self, application: str = AUTOMATION_APPLICATION) -> ApiKey:
        """Current key used when calling ``application``, renewed if expired."""
        candidates = [
            k for k in await self._repository.list_api_keys(application) if not k.is_revoked
        ]
        if not candidates:
            raise NotFoundError(f"No valid API key found for {application} application")
        record = candidates[0]
        if self._clock() > record.expires_at:
            logger.info(f"API key {record.id} expired, renewing before use")
            record = await self.renew(record.id)
        return record
