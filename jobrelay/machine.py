"""Process lifecycle state machine."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from .contracts import ACTIVE_STATUSES, Principal, ProcessStatus, utc_now
from .errors import ConflictError, ForbiddenError, NotFoundError, StateError, ValidationError
from .persistence import CoordinationRepository, ProcessRecord

logger = logging.getLogger(__name__)

S = ProcessStatus

# Valid state transitions
TRANSITIONS: Dict[ProcessStatus, frozenset[ProcessStatus]] = {
    S.PENDING: frozenset({S.ON_HOLD, S.PROCESSING, S.SUCCESS, S.FAILED}),
    S.ON_HOLD: frozenset({S.PENDING, S.FAILED}),
    S.PROCESSING: frozenset({S.COMPLETED, S.SEM_COMPLETED, S.PENDING, S.FAILED}),
    S.SEM_COMPLETED: frozenset({S.PROCESSING, S.SUCCESS, S.COMPLETED, S.FAILED}),
    S.SUCCESS: frozenset({S.PROCESSING, S.COMPLETED, S.FAILED}),
    # Terminal states have no transitions
    S.COMPLETED: frozenset(),
    S.FAILED: frozenset(),
}

# Targets a client may request through the status endpoint.
CLIENT_TARGETS = frozenset({S.PENDING, S.ON_HOLD, S.FAILED})

END_STATES = frozenset({S.COMPLETED, S.FAILED})


class ProcessStateMachine:
    """Owns every status change of a process record.

    Guards are evaluated and the new record written while holding one lock,
    so at most one process can be ``pending`` in this server instance. A
    rejected transition leaves the stored record untouched.
    """

    def __init__(
        self,
        repository: CoordinationRepository,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._repository = repository
        self._clock = clock
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Lookup
    async def get(self, process_id: str) -> ProcessRecord:
        process = await self._repository.get_process(process_id)
        if process is None:
            raise NotFoundError("Process not found", {"process_id": process_id})
        return process

    async def get_for(self, principal: Principal, process_id: str) -> ProcessRecord:
        """Load a process the principal owns, or any process for admins."""
        process = await self.get(process_id)
        if not principal.can_act_on(process.user_id):
            raise ForbiddenError("Process belongs to another user")
        return process

    async def resolve_active(
        self, principal: Principal, process_id: Optional[str] = None
    ) -> ProcessRecord:
        """Process a command acts on.

        An explicit id is checked for ownership. Otherwise the principal's
        most recent pending/processing process is used; admins get the most
        recent one system-wide.
        """
        if process_id:
            return await self.get_for(principal, process_id)
        user_filter = None if principal.is_admin else principal.user_id
        candidates = await self._repository.list_processes(
            user_id=user_filter, statuses=ACTIVE_STATUSES
        )
        if not candidates:
            raise NotFoundError("No active process found")
        return candidates[0]

    async def list_for(self, principal: Principal) -> list[ProcessRecord]:
        user_filter = None if principal.is_admin else principal.user_id
        return await self._repository.list_processes(user_id=user_filter)

    # ------------------------------------------------------------------
    # Creation and removal
    async def create(
        self, user_id: str, details: Optional[Dict[str, Any]] = None
    ) -> ProcessRecord:
        async with self._lock:
            active = await self._repository.list_processes(statuses=ACTIVE_STATUSES)
            if active:
                raise ConflictError(
                    "Active process already exists", {"process_id": active[0].id}
                )
            now = self._clock()
            process = ProcessRecord(
                user_id=user_id,
                status=S.PENDING,
                details=details or {},
                created_at=now,
                updated_at=now,
            )
            await self._repository.save_process(process)
        logger.info(f"Created process {process.id} for user_id={user_id}")
        return process

    async def delete(self, principal: Principal, process_id: str) -> None:
        process = await self.get_for(principal, process_id)
        if process.status != S.FAILED:
            raise StateError(
                process.status.value,
                "deleted",
                "only processes with failed status can be deleted",
            )
        await self._repository.delete_process(process_id)
        logger.info(f"Deleted process {process_id}")

    # ------------------------------------------------------------------
    # Transitions
    @staticmethod
    def can_transition(current: ProcessStatus, target: ProcessStatus) -> bool:
        return target in TRANSITIONS[current]

    async def transition(
        self,
        process_id: str,
        target: ProcessStatus,
        *,
        progress: Optional[int] = None,
        stage: Optional[str] = None,
    ) -> ProcessRecord:
        """Move ``process_id`` to ``target``.

        Raises:
            NotFoundError: unknown process.
            StateError: transition not allowed from the current status, or
                another process already holds ``pending``.
        """
        target = ProcessStatus(target)
        async with self._lock:
            process = await self.get(process_id)
            current = process.status
            if not self.can_transition(current, target):
                raise StateError(current.value, target.value)
            if target == S.PENDING:
                await self._ensure_no_other_pending(process)

            now = self._clock()
            update: Dict[str, Any] = {"status": target, "updated_at": now}
            if target in END_STATES:
                update["end_time"] = now
            if target == S.PROCESSING and process.start_time is None:
                update["start_time"] = now
            if progress is not None:
                update["progress"] = progress
            if stage is not None:
                update["stage"] = stage
            updated = process.model_copy(update=update)
            await self._repository.save_process(updated)

        logger.info(
            f"Process {process_id} transitioned from {current.value} to {target.value}"
        )
        return updated

    async def update_progress(
        self, process_id: str, progress: int, stage: Optional[str] = None
    ) -> ProcessRecord:
        """Record progress without changing status."""
        async with self._lock:
            process = await self.get(process_id)
            if process.status.is_terminal():
                raise StateError(
                    process.status.value,
                    process.status.value,
                    "process already finished",
                )
            update: Dict[str, Any] = {"progress": progress, "updated_at": self._clock()}
            if stage is not None:
                update["stage"] = stage
            updated = process.model_copy(update=update)
            await self._repository.save_process(updated)
        return updated

    async def client_transition(
        self, principal: Principal, process_id: str, target: ProcessStatus | str
    ) -> ProcessRecord:
        """Transition requested by a client through the status endpoint."""
        try:
            target = ProcessStatus(target)
        except ValueError:
            raise ValidationError(f"Invalid status: {target}") from None
        if target not in CLIENT_TARGETS:
            raise ValidationError(
                "Invalid status. Only pending, on_hold, or failed are allowed.",
                {"allowed": sorted(s.value for s in CLIENT_TARGETS)},
            )
        process = await self.get_for(principal, process_id)
        if target == S.FAILED and process.status != S.ON_HOLD:
            # running processes are failed through the terminate command
            raise StateError(
                process.status.value, target.value, "only on_hold processes can be failed here"
            )
        return await self.transition(process_id, target)

    async def _ensure_no_other_pending(self, process: ProcessRecord) -> None:
        pending = await self._repository.list_processes(statuses=[S.PENDING])
        others = [p for p in pending if p.id != process.id]
        if others:
            raise StateError(
                process.status.value,
                S.PENDING.value,
                f"process {others[0].id} is already pending",
            )
