"""Commands that drive the external worker.

Every command kind has exactly one handler. Worker-bound handlers sign
their request with the process token, call the worker once, apply the
resulting state change and tell the acting user how it went.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from pydantic import BaseModel, Field

from .constants import HEADER_PROCESS_ID, HEADER_ROLE, HEADER_USER_ID
from .contracts import NotificationType, Principal, ProcessStatus
from .errors import (
    ExternalServiceError,
    ForbiddenError,
    JobRelayError,
    StateError,
    ValidationError,
    WorkerConflictError,
)
from .ingestion import EventIngestion
from .machine import ProcessStateMachine
from .notifications import NotificationService
from .persistence import Notification, ProcessRecord
from .ratelimit import BaseRateLimiter
from .security import ApiKeyAuthority, TokenAuthority, canonical_json, signed_headers, timestamp_ms
from .utils.tasks import BackgroundRunner
from .worker import WorkerClient

logger = logging.getLogger(__name__)


class CommandKind(str, Enum):
    START = "start"
    TERMINATE = "terminate"
    RESTART = "restart"
    MARK_SUCCESS = "mark_success"
    REMATCH = "rematch"
    REMATCH_USER = "rematch_user"
    REMATCH_PLAYER = "rematch_player"
    REFILTER = "refilter"
    REFILTER_PLAYER = "refilter_player"
    NOTIFY_ALL = "notify_all"
    SUBMIT_VERIFICATION_CODE = "submit_verification_code"
    SUBMIT_VERIFICATION_OPTION = "submit_verification_option"
    SUBMIT_CONFIRMATION = "submit_confirmation"
    SUBMIT_CREDENTIAL = "submit_credential"
    RETRANSFER_AMOUNT = "retransfer_amount"


# Kinds whose worker call runs after the response has been sent.
FIRE_AND_FORGET = frozenset(
    {
        CommandKind.START,
        CommandKind.RESTART,
        CommandKind.REMATCH,
        CommandKind.REMATCH_USER,
        CommandKind.REMATCH_PLAYER,
        CommandKind.REFILTER,
        CommandKind.REFILTER_PLAYER,
    }
)

RATE_LIMITED = frozenset({CommandKind.TERMINATE, CommandKind.MARK_SUCCESS})

# action path segment and payload fields each match-family command needs
MATCH_COMMANDS: Dict[CommandKind, Tuple[str, Tuple[str, ...]]] = {
    CommandKind.REMATCH: ("rematch", ()),
    CommandKind.REMATCH_USER: ("rematch-user", ("target_user_id",)),
    CommandKind.REMATCH_PLAYER: ("rematch-player", ("match_id",)),
    CommandKind.REFILTER: ("refilter", ("bonus_id",)),
    CommandKind.REFILTER_PLAYER: ("refilter-player", ("bonus_id", "match_id")),
}

FORM_COMMANDS: Dict[CommandKind, Tuple[str, str]] = {
    CommandKind.SUBMIT_VERIFICATION_CODE: ("/forms/verification-code", "code"),
    CommandKind.SUBMIT_VERIFICATION_OPTION: ("/forms/verification-option", "option"),
    CommandKind.SUBMIT_CONFIRMATION: ("/forms/confirmation", "confirmed"),
}

FORWARD_COMMANDS: Dict[CommandKind, str] = {
    CommandKind.SUBMIT_CREDENTIAL: "/credentials",
    CommandKind.RETRANSFER_AMOUNT: "/transfers/retransfer-amount",
}

LABELS: Dict[CommandKind, str] = {
    CommandKind.START: "start the process",
    CommandKind.TERMINATE: "terminate the process",
    CommandKind.RESTART: "restart the process",
    CommandKind.MARK_SUCCESS: "mark the process as successful",
    CommandKind.REMATCH: "rematch",
    CommandKind.REMATCH_USER: "rematch the user",
    CommandKind.REMATCH_PLAYER: "rematch the player",
    CommandKind.REFILTER: "refilter",
    CommandKind.REFILTER_PLAYER: "refilter the player",
    CommandKind.NOTIFY_ALL: "send the notification",
    CommandKind.SUBMIT_VERIFICATION_CODE: "submit the verification code",
    CommandKind.SUBMIT_VERIFICATION_OPTION: "submit the verification option",
    CommandKind.SUBMIT_CONFIRMATION: "submit the confirmation",
    CommandKind.SUBMIT_CREDENTIAL: "submit the credential",
    CommandKind.RETRANSFER_AMOUNT: "retransfer the amount",
}


class CommandContext(BaseModel):
    kind: CommandKind
    principal: Principal
    payload: Dict[str, Any] = Field(default_factory=dict)
    background: bool = False


class CommandResult(BaseModel):
    kind: CommandKind
    accepted: bool = False
    process: Optional[ProcessRecord] = None
    worker_response: Optional[Dict[str, Any]] = None
    notification: Optional[Notification] = None


Handler = Callable[[CommandContext], Awaitable[CommandResult]]


class CommandDispatcher:
    """Executes ``CommandKind`` commands on behalf of a principal."""

    def __init__(
        self,
        *,
        machine: ProcessStateMachine,
        tokens: TokenAuthority,
        notifications: NotificationService,
        ingestion: EventIngestion,
        worker: WorkerClient,
        rate_limiter: BaseRateLimiter,
        runner: BackgroundRunner,
        api_key: str = "",
        api_keys: Optional[ApiKeyAuthority] = None,
    ) -> None:
        self._machine = machine
        self._tokens = tokens
        self._notifications = notifications
        self._ingestion = ingestion
        self._worker = worker
        self._rate_limiter = rate_limiter
        self._runner = runner
        self._api_key = api_key
        self._api_keys = api_keys

        self._handlers: Dict[CommandKind, Handler] = {
            CommandKind.START: self._start,
            CommandKind.TERMINATE: self._terminate,
            CommandKind.RESTART: self._restart,
            CommandKind.MARK_SUCCESS: self._mark_success,
            CommandKind.NOTIFY_ALL: self._notify_all,
        }
        for kind in MATCH_COMMANDS:
            self._handlers[kind] = self._match
        for kind in FORM_COMMANDS:
            self._handlers[kind] = self._submit_form
        for kind in FORWARD_COMMANDS:
            self._handlers[kind] = self._forward

        missing = set(CommandKind) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No handler for commands: {sorted(k.value for k in missing)}")

    # ------------------------------------------------------------------
    # Entry points
    async def execute(
        self,
        kind: CommandKind | str,
        principal: Principal,
        payload: Optional[Dict[str, Any]] = None,
    ) -> CommandResult:
        """Run ``kind`` to completion, worker call included."""
        return await self._run(kind, principal, payload, background=False)

    async def submit(
        self,
        kind: CommandKind | str,
        principal: Principal,
        payload: Optional[Dict[str, Any]] = None,
    ) -> CommandResult:
        """Validate ``kind`` and hand its worker call to the background runner.

        Kinds that are not fire-and-forget run to completion as in
        ``execute``.
        """
        return await self._run(kind, principal, payload, background=True)

    async def _run(
        self,
        kind: CommandKind | str,
        principal: Principal,
        payload: Optional[Dict[str, Any]],
        background: bool,
    ) -> CommandResult:
        try:
            kind = CommandKind(kind)
        except ValueError:
            raise ValidationError(
                f"Unknown command: {kind}", {"validValues": [k.value for k in CommandKind]}
            ) from None
        ctx = CommandContext(
            kind=kind,
            principal=principal,
            payload=dict(payload or {}),
            background=background and kind in FIRE_AND_FORGET,
        )
        if kind in RATE_LIMITED:
            await self._rate_limiter.acquire(kind.value)
        logger.info(f"Executing {kind.value} for user_id={principal.user_id}")
        return await self._handlers[kind](ctx)

    async def _launch(
        self, ctx: CommandContext, work: Callable[[], Awaitable[Any]]
    ) -> Any:
        if not ctx.background:
            return await work()

        async def on_error(error: BaseException) -> None:
            # worker failures already notified the user
            if isinstance(error, ExternalServiceError):
                return
            await self._notifications.notify(
                ctx.principal.user_id,
                f"Failed to {LABELS[ctx.kind]}: {error}",
                NotificationType.ERROR,
            )

        self._runner.spawn(work(), on_error=on_error, name=f"command-{ctx.kind.value}")
        return None

    # ------------------------------------------------------------------
    # Worker calls
    async def _outbound_api_key(self) -> str:
        if self._api_key:
            return self._api_key
        if self._api_keys is not None:
            return (await self._api_keys.outbound_key()).token
        raise JobRelayError("No API key configured for worker requests")

    async def _call_worker(
        self,
        ctx: CommandContext,
        process: ProcessRecord,
        path: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        token = await self._tokens.active_token(process.id)
        body = canonical_json(
            {
                **(payload or {}),
                "process_id": process.id,
                "user_id": process.user_id,
                "role": ctx.principal.role.value,
                "action": ctx.kind.value,
                "timestamp": timestamp_ms(),
            }
        )
        headers = signed_headers(
            body,
            api_key=await self._outbound_api_key(),
            token=token.token,
            secret=self._tokens.shared_secret,
        )
        headers[HEADER_USER_ID] = process.user_id
        headers[HEADER_PROCESS_ID] = process.id
        headers[HEADER_ROLE] = ctx.principal.role.value
        return await self._worker.post(path, body, headers)

    async def _call_or_notify(
        self,
        ctx: CommandContext,
        process: ProcessRecord,
        path: str,
        payload: Optional[Dict[str, Any]] = None,
        revert_to: Optional[ProcessStatus] = None,
    ) -> Dict[str, Any]:
        """Call the worker; on failure revert to ``revert_to``, notify and re-raise.

        A worker conflict only warns the user and leaves the status alone
        unless ``revert_to`` is given.
        """
        try:
            return await self._call_worker(ctx, process, path, payload)
        except WorkerConflictError as e:
            if revert_to is not None:
                await self._revert(process.id, revert_to)
            await self._notifications.notify(
                ctx.principal.user_id,
                f"Could not {LABELS[ctx.kind]}: {e.message}",
                NotificationType.WARNING,
            )
            raise
        except ExternalServiceError as e:
            if revert_to is not None:
                await self._revert(process.id, revert_to)
            await self._notifications.notify(
                ctx.principal.user_id,
                f"Failed to {LABELS[ctx.kind]}: {e.message}",
                NotificationType.ERROR,
            )
            raise

    async def _revert(self, process_id: str, status: ProcessStatus) -> None:
        current = await self._machine.get(process_id)
        if current.status == status:
            return
        try:
            await self._machine.transition(process_id, status)
        except StateError as e:
            logger.warning(f"Could not revert process {process_id} to {status.value}: {e}")

    async def _success(self, ctx: CommandContext, message: str) -> Optional[Notification]:
        return await self._notifications.notify(
            ctx.principal.user_id, message, NotificationType.SUCCESS
        )

    # ------------------------------------------------------------------
    # Lifecycle commands
    async def _start(self, ctx: CommandContext) -> CommandResult:
        details = ctx.payload.get("details", ctx.payload)
        process = await self._machine.create(ctx.principal.user_id, details)
        await self._tokens.issue(process.user_id, process.id)

        async def work() -> ProcessRecord:
            response = await self._call_or_notify(
                ctx,
                process,
                "/process/start",
                {"details": process.details},
                revert_to=ProcessStatus.PENDING,
            )
            updated = await self._machine.transition(process.id, ProcessStatus.PROCESSING)
            await self._success(ctx, "Process started successfully")
            logger.info(f"Worker accepted start for process {process.id}: {response}")
            return updated

        started = await self._launch(ctx, work)
        return CommandResult(kind=ctx.kind, accepted=ctx.background, process=started or process)

    async def _terminate(self, ctx: CommandContext) -> CommandResult:
        process = await self._machine.resolve_active(ctx.principal, ctx.payload.get("process_id"))
        if process.status.is_terminal():
            raise StateError(process.status.value, ProcessStatus.FAILED.value, "process already finished")
        response = await self._call_or_notify(ctx, process, "/process/shutdown")
        await self._tokens.complete_for_process(process.id)
        updated = await self._machine.transition(process.id, ProcessStatus.FAILED)
        notification = await self._success(ctx, "Process terminated successfully")
        return CommandResult(
            kind=ctx.kind, process=updated, worker_response=response, notification=notification
        )

    async def _restart(self, ctx: CommandContext) -> CommandResult:
        process = await self._machine.resolve_active(ctx.principal, ctx.payload.get("process_id"))
        if process.status != ProcessStatus.PENDING:
            raise StateError(
                process.status.value,
                ProcessStatus.PROCESSING.value,
                "only pending processes can be restarted",
            )

        async def work() -> ProcessRecord:
            await self._tokens.issue(process.user_id, process.id)
            await self._machine.transition(process.id, ProcessStatus.PROCESSING)
            await self._call_or_notify(
                ctx, process, "/process/restart", revert_to=ProcessStatus.PENDING
            )
            await self._success(ctx, "Process restarted successfully")
            return await self._machine.get(process.id)

        restarted = await self._launch(ctx, work)
        return CommandResult(kind=ctx.kind, accepted=ctx.background, process=restarted or process)

    async def _mark_success(self, ctx: CommandContext) -> CommandResult:
        process = await self._machine.resolve_active(ctx.principal, ctx.payload.get("process_id"))
        updated = await self._machine.transition(process.id, ProcessStatus.SUCCESS)
        notification = await self._success(ctx, "Process marked as successful")
        return CommandResult(kind=ctx.kind, process=updated, notification=notification)

    # ------------------------------------------------------------------
    # Matching
    async def _match(self, ctx: CommandContext) -> CommandResult:
        action, required = MATCH_COMMANDS[ctx.kind]
        missing = [f for f in required if not ctx.payload.get(f)]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")
        process = await self._machine.resolve_active(ctx.principal, ctx.payload.get("process_id"))
        payload = {
            k: ctx.payload[k]
            for k in ("match_id", "target_user_id", "bonus_id")
            if ctx.payload.get(k) is not None
        }

        async def work() -> Dict[str, Any]:
            response = await self._call_or_notify(ctx, process, f"/matches/{action}", payload)
            await self._success(ctx, f"{LABELS[ctx.kind].capitalize()} completed successfully")
            return response

        response = await self._launch(ctx, work)
        return CommandResult(
            kind=ctx.kind, accepted=ctx.background, process=process, worker_response=response
        )

    # ------------------------------------------------------------------
    # Notifications
    async def _notify_all(self, ctx: CommandContext) -> CommandResult:
        message = ctx.payload.get("message")
        if not message:
            raise ValidationError("Missing message")
        try:
            notification_type = NotificationType(ctx.payload.get("type") or "info")
        except ValueError:
            raise ValidationError(
                "Invalid notification type",
                {"validValues": [t.value for t in NotificationType]},
            ) from None
        user_id = ctx.payload.get("user_id") or ctx.principal.user_id
        if not ctx.principal.can_act_on(user_id):
            raise ForbiddenError("Only admins can notify other users")
        notification = await self._notifications.notify(user_id, message, notification_type)
        return CommandResult(kind=ctx.kind, notification=notification)

    # ------------------------------------------------------------------
    # Form answers and pass-through requests
    async def _submit_form(self, ctx: CommandContext) -> CommandResult:
        path, answer_field = FORM_COMMANDS[ctx.kind]
        thread_id = ctx.payload.get("thread_id")
        if not thread_id:
            raise ValidationError("Missing thread_id")
        if ctx.payload.get(answer_field) is None:
            raise ValidationError(f"Missing {answer_field}")
        process = await self._machine.resolve_active(ctx.principal, ctx.payload.get("process_id"))
        payload = {"thread_id": thread_id, answer_field: ctx.payload[answer_field]}

        response = await self._call_or_notify(ctx, process, path, payload)
        await self._ingestion.record_form_response(process.id, thread_id, payload)
        return CommandResult(kind=ctx.kind, process=process, worker_response=response)

    async def _forward(self, ctx: CommandContext) -> CommandResult:
        payload = {k: v for k, v in ctx.payload.items() if k != "process_id"}
        if not payload:
            raise ValidationError("Missing request body")
        process = await self._machine.resolve_active(ctx.principal, ctx.payload.get("process_id"))
        response = await self._call_or_notify(ctx, process, FORWARD_COMMANDS[ctx.kind], payload)
        return CommandResult(kind=ctx.kind, process=process, worker_response=response)
