"""HTTP client for the external automation worker."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Mapping

import requests

from .errors import ExternalServiceError, WorkerConflictError

logger = logging.getLogger(__name__)


class WorkerClient:
    """Posts signed command bodies to the worker.

    ``requests`` is blocking, so each call runs in a worker thread.
    """

    def __init__(self, base_url: str, timeout: float = 10.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    async def post(self, path: str, body: bytes, headers: Mapping[str, str]) -> Dict[str, Any]:
        """POST ``body`` as-is and return the decoded JSON answer.

        Raises:
            WorkerConflictError: the worker answered 409 or reported that it
                is already processing.
            ExternalServiceError: any other non-2xx answer, or the worker
                could not be reached.
        """
        url = self.url(path)
        try:
            resp = await asyncio.to_thread(
                requests.post, url, data=body, headers=dict(headers), timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.error(f"Worker unreachable at {url}: {e}")
            raise ExternalServiceError(f"Failed to connect to worker: {e}") from e

        data = _decode(resp)
        if 200 <= resp.status_code < 300:
            return data if isinstance(data, dict) else {"result": data}

        message = _error_message(data) or f"Worker responded with {resp.status_code}"
        logger.warning(f"Worker {url} answered {resp.status_code}: {message}")
        if resp.status_code == 409 or "already processing" in message.lower():
            raise WorkerConflictError(message, resp.status_code, data)
        raise ExternalServiceError(message, resp.status_code, data)


def _decode(resp: requests.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return {"raw": resp.text}


def _error_message(data: Any) -> str:
    if isinstance(data, dict):
        for key in ("message", "detail", "error", "raw"):
            value = data.get(key)
            if isinstance(value, str) and value:
                return value
    return ""
