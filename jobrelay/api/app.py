"""FastAPI application factory."""

from __future__ import annotations

import logging
import math
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import JobRelayConfig, load_config
from ..contracts import utc_now
from ..errors import JobRelayError, RateLimitedError
from .deps import Services, build_services
from .routes import commands, events, external, forms, keys, notifications, processes

logger = logging.getLogger(__name__)


async def handle_jobrelay_error(request: Request, exc: JobRelayError) -> JSONResponse:
    headers = {}
    if isinstance(exc, RateLimitedError):
        headers["Retry-After"] = str(max(1, math.ceil(exc.retry_after)))
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(exc.to_dict(), status_code=exc.status_code, headers=headers)


def create_app(
    config: Optional[JobRelayConfig] = None, services: Optional[Services] = None
) -> FastAPI:
    """Build the application around one ``Services`` container."""
    config = config or load_config()
    services = services or build_services(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await services.start()
        yield
        await services.stop()

    app = FastAPI(
        title="jobrelay",
        description="Coordinates automation worker processes with web clients",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.services = services
    app.add_exception_handler(JobRelayError, handle_jobrelay_error)

    app.include_router(processes.router)
    app.include_router(commands.router)
    app.include_router(forms.router)
    app.include_router(notifications.router)
    app.include_router(external.router)
    app.include_router(keys.router)
    app.include_router(events.router)

    @app.get("/health", tags=["meta"])
    def health():
        return {"status": "healthy", "time": utc_now().isoformat()}

    return app
