"""Service container and FastAPI dependencies."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Request

from ..config import JobRelayConfig
from ..contracts import Principal, WorkerIdentity
from ..dispatch import CommandDispatcher
from ..errors import ForbiddenError
from ..fanout import BaseFanout, get_fanout
from ..ingestion import EventIngestion
from ..machine import ProcessStateMachine
from ..notifications import NotificationService
from ..persistence import CoordinationRepository, UserRecord, get_repository
from ..ratelimit import BaseRateLimiter, get_rate_limiter
from ..security import ApiKeyAuthority, SessionCodec, TokenAuthority
from ..utils.tasks import BackgroundRunner
from ..worker import WorkerClient

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything a request handler needs, built once per application."""

    config: JobRelayConfig
    repository: CoordinationRepository
    fanout: BaseFanout
    rate_limiter: BaseRateLimiter
    runner: BackgroundRunner
    api_keys: ApiKeyAuthority
    tokens: TokenAuthority
    sessions: SessionCodec
    machine: ProcessStateMachine
    notifications: NotificationService
    ingestion: EventIngestion
    worker: WorkerClient
    dispatcher: CommandDispatcher

    async def start(self) -> None:
        await self.fanout.connect()
        logger.info("jobrelay services started")

    async def stop(self) -> None:
        await self.runner.cancel_all()
        await self.fanout.disconnect()
        close = getattr(self.rate_limiter, "close", None)
        if close is not None:
            await close()
        close = getattr(self.repository, "close", None)
        if close is not None:
            close()
        logger.info("jobrelay services stopped")


def build_services(
    config: JobRelayConfig,
    repository: Optional[CoordinationRepository] = None,
    fanout: Optional[BaseFanout] = None,
    rate_limiter: Optional[BaseRateLimiter] = None,
    worker: Optional[WorkerClient] = None,
) -> Services:
    """Wire the services for ``config``; explicit arguments replace backends.

    Raises:
        ValueError: ``security.session_secret`` or ``security.shared_secret``
            is not configured.
    """
    missing = [
        name
        for name in ("session_secret", "shared_secret")
        if not getattr(config.security, name)
    ]
    if missing:
        raise ValueError(
            f"security.{' and security.'.join(missing)} must be configured"
        )
    repository = repository or get_repository(config.database_url or "", config)
    fanout = fanout or get_fanout(config=config.fanout)
    rate_limiter = rate_limiter or get_rate_limiter(config.rate_limit)
    worker = worker or WorkerClient(config.worker.base_url, config.worker.timeout)
    security = config.security

    runner = BackgroundRunner()
    api_keys = ApiKeyAuthority(repository, ttl_days=security.api_key_ttl_days)
    tokens = TokenAuthority(
        repository,
        api_key=security.api_key,
        shared_secret=security.shared_secret,
        api_keys=api_keys,
        token_ttl_hours=security.token_ttl_hours,
        freshness_window_seconds=security.freshness_window_seconds,
    )
    sessions = SessionCodec(security.session_secret, security.session_algorithm)
    machine = ProcessStateMachine(repository)
    notifications = NotificationService(repository, fanout)
    ingestion = EventIngestion(repository, machine, tokens, notifications)
    dispatcher = CommandDispatcher(
        machine=machine,
        tokens=tokens,
        notifications=notifications,
        ingestion=ingestion,
        worker=worker,
        rate_limiter=rate_limiter,
        runner=runner,
        api_key=security.api_key,
        api_keys=api_keys,
    )
    return Services(
        config=config,
        repository=repository,
        fanout=fanout,
        rate_limiter=rate_limiter,
        runner=runner,
        api_keys=api_keys,
        tokens=tokens,
        sessions=sessions,
        machine=machine,
        notifications=notifications,
        ingestion=ingestion,
        worker=worker,
        dispatcher=dispatcher,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


async def current_principal(
    request: Request, services: Services = Depends(get_services)
) -> Principal:
    """Principal from the ``Authorization: Bearer`` session token.

    The user is remembered so that admins can be found when fanning out.
    """
    principal = services.sessions.from_authorization(request.headers.get("Authorization"))
    known = await services.repository.get_user(principal.user_id)
    if known is None or known.role != principal.role:
        await services.repository.save_user(UserRecord(id=principal.user_id, role=principal.role))
    return principal


async def require_admin(principal: Principal = Depends(current_principal)) -> Principal:
    if not principal.is_admin:
        raise ForbiddenError("Forbidden: Admin role required")
    return principal


async def worker_identity(
    request: Request, services: Services = Depends(get_services)
) -> WorkerIdentity:
    """Verify the four signature headers against the raw request body."""
    raw_body = await request.body()
    return await services.tokens.verify(request.headers, raw_body)
