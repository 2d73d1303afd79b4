"""Exception taxonomy shared by the core services and the HTTP layer."""

from __future__ import annotations

from typing import Any, Dict, Optional


class JobRelayError(Exception):
    """Base class for all jobrelay errors.

    ``status_code`` is the HTTP status the API layer responds with, and
    ``details`` is merged into the JSON error body.
    """

    status_code: int = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message}
        body.update(self.details)
        return body


class AuthError(JobRelayError):
    """Missing, invalid, expired or revoked credential, or bad signature."""

    status_code = 401


class ForbiddenError(AuthError):
    """Credential is valid but does not grant the requested action."""

    status_code = 403


class ReplayError(AuthError):
    """Request timestamp is outside the freshness window."""

    status_code = 401


class ValidationError(JobRelayError):
    status_code = 400


class StateError(JobRelayError):
    """Illegal process status transition."""

    status_code = 400

    def __init__(self, current: str, requested: str, reason: Optional[str] = None) -> None:
        message = f"Cannot transition process from '{current}' to '{requested}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, {"current": current, "requested": requested})
        self.current = current
        self.requested = requested


class NotFoundError(JobRelayError):
    status_code = 404


class ConflictError(JobRelayError):
    status_code = 409


class RateLimitedError(JobRelayError):
    """Command invoked again before its minimum interval elapsed."""

    status_code = 429

    def __init__(self, key: str, retry_after: float) -> None:
        super().__init__(
            f"Rate limit exceeded for '{key}'",
            {"retry_after": round(retry_after, 3)},
        )
        self.key = key
        self.retry_after = retry_after


class ExternalServiceError(JobRelayError):
    """Worker unreachable or answered with a non-2xx status."""

    status_code = 502

    def __init__(
        self,
        message: str,
        worker_status: Optional[int] = None,
        worker_details: Any = None,
    ) -> None:
        super().__init__(message, {"worker_status": worker_status, "details": worker_details})
        self.worker_status = worker_status
        self.worker_details = worker_details
        if worker_status is None:
            self.status_code = 503


class WorkerConflictError(ExternalServiceError):
    """Known conflict answer from the worker, e.g. "already processing"."""

    status_code = 409
