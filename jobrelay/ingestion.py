"""Worker-reported events, progress reports and read-time form expiry."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from .contracts import (
    FORM_EVENTS,
    VERIFICATION_OPTION_TYPES,
    EventName,
    FormType,
    NotificationType,
    Principal,
    ProcessStatus,
    WorkerIdentity,
    utc_now,
)
from .errors import ValidationError
from .machine import END_STATES, ProcessStateMachine
from .notifications import NotificationService
from .persistence import CoordinationRepository, ProcessEvent, ProcessRecord
from .persistence.models import new_id
from .security import TokenAuthority

logger = logging.getLogger(__name__)

PROCESS_UPDATE_EVENT = "process_update"
SHOW_DETAILS_EVENT = "show_details"
CONFIRM_TRANSFER_EVENT = "confirm_transfer"
FORMS_EVENT = "forms"

# Fields each event kind must carry in ``data``; a ``*`` prefix marks fields
# that live on the event itself.
REQUIRED_FIELDS: Dict[EventName, tuple[str, ...]] = {
    EventName.PROGRESS_TRACKER: ("message",),
    EventName.CONFIRMATION_DIALOG: ("*thread_id", "message"),
    EventName.VERIFICATION_OPTIONS: ("*thread_id", "message", "options"),
    EventName.VERIFICATION_CODE: ("*thread_id", "message"),
}

STATUS_UPDATE_EVENTS = {
    "match": EventName.MATCHES_STATUS,
    "transfer": EventName.TRANSFER_STATUS,
}


class ActiveForm(ProcessEvent):
    """Interactive form still awaiting an answer.

    ``remaining_seconds`` is ``None`` for forms without a timeout.
    """

    remaining_seconds: Optional[float] = None


def form_timeout(data: Mapping[str, Any]) -> Optional[float]:
    """Timeout in seconds, or ``None`` when the form never expires."""
    value = data.get("original_timeout") or data.get("timeout")
    if value is None or isinstance(value, bool):
        return None
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    return seconds if seconds > 0 else None


class EventIngestion:
    """Validates, records and publishes what the worker reports back."""

    def __init__(
        self,
        repository: CoordinationRepository,
        machine: ProcessStateMachine,
        tokens: TokenAuthority,
        notifications: NotificationService,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._repository = repository
        self._machine = machine
        self._tokens = tokens
        self._notifications = notifications
        self._clock = clock

    # ------------------------------------------------------------------
    # Generic events
    async def dispatch(
        self,
        process_id: str,
        user_id: str,
        event_name: EventName | str,
        status: str,
        process_stage: str,
        data: Optional[Dict[str, Any]] = None,
        thread_stage: Optional[str] = None,
        thread_id: Optional[str] = None,
    ) -> ProcessEvent:
        """Record one worker event and publish it to the process owner.

        A rejected event is reported to the user as an error notification
        before ``ValidationError`` propagates.
        """
        try:
            event = self._build_event(
                process_id, event_name, status, process_stage, data, thread_stage, thread_id
            )
        except ValidationError as e:
            logger.warning(f"Rejected event {event_name} for process_id={process_id}: {e.message}")
            await self._notifications.notify(
                user_id,
                f"unable to dispatch the event: {e.message}",
                NotificationType.ERROR,
            )
            raise

        await self._repository.add_event(event)
        await self._notifications.publish(
            user_id,
            event.event_name.value,
            {"threadId": event.thread_id, "processId": process_id, "data": event.data},
        )
        logger.info(
            f"Recorded {event.event_name.value} event {event.id} for process_id={process_id}"
        )
        return event

    def _build_event(
        self,
        process_id: str,
        event_name: EventName | str,
        status: str,
        process_stage: str,
        data: Optional[Dict[str, Any]],
        thread_stage: Optional[str],
        thread_id: Optional[str],
    ) -> ProcessEvent:
        name = _event_name(event_name)
        if not status or not process_stage:
            raise ValidationError("Missing event_name, status or process_stage")
        if data is not None and not isinstance(data, dict):
            raise ValidationError(f"{name.value} event data must be an object")
        data = dict(data or {})

        for field in REQUIRED_FIELDS.get(name, ()):
            if field.startswith("*"):
                if not thread_id:
                    raise ValidationError(f"{name.value} event requires 'thread_id'")
            elif not data.get(field):
                raise ValidationError(f"{name.value} event requires '{field}' in data")

        timeout = data.get("timeout")
        if timeout is not None and (
            isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout < 0
        ):
            raise ValidationError("'timeout' must be a non-negative number of seconds")

        return ProcessEvent(
            process_id=process_id,
            event_name=name,
            status=status,
            process_stage=process_stage,
            thread_stage=thread_stage,
            thread_id=thread_id,
            data=data,
            created_at=self._clock(),
        )

    async def list_events(
        self, process_id: str, event_name: Optional[EventName | str] = None
    ) -> List[ProcessEvent]:
        names = [_event_name(event_name)] if event_name is not None else None
        return await self._repository.list_events(process_id, names)

    async def record_form_response(
        self, process_id: str, thread_id: str, data: Dict[str, Any]
    ) -> ProcessEvent:
        """Record the client's answer on ``thread_id``; the form stops being active."""
        event = ProcessEvent(
            process_id=process_id,
            event_name=EventName.FORM_RESPONSE,
            status="submitted",
            process_stage="form_response",
            thread_id=thread_id,
            data=data,
            created_at=self._clock(),
        )
        await self._repository.add_event(event)
        return event

    # ------------------------------------------------------------------
    # Forms
    async def active_forms(
        self, process_id: str, now: Optional[datetime] = None
    ) -> List[ActiveForm]:
        """Forms of ``process_id`` that are neither answered nor expired.

        Remaining time is recomputed on every call from ``created_at`` and
        the form's timeout; stored events are never changed.
        """
        now = now or self._clock()
        events = await self._repository.list_events(
            process_id, [*FORM_EVENTS, EventName.FORM_RESPONSE]
        )
        return [
            form
            for form in (self._evaluate(e, now) for e in _latest_per_thread(events))
            if form is not None
        ]

    def _evaluate(self, event: ProcessEvent, now: datetime) -> Optional[ActiveForm]:
        if not event.event_name.is_form():
            return None
        data = dict(event.data)
        if data.get("is_active") is False:
            return None
        timeout = form_timeout(data)
        remaining: Optional[float] = None
        if timeout is not None:
            remaining = (event.created_at + timedelta(seconds=timeout) - now).total_seconds()
            if remaining <= 0:
                return None
            data["original_timeout"] = timeout
            data["timeout"] = round(remaining)
        return ActiveForm(
            **event.model_dump(exclude={"data"}), data=data, remaining_seconds=remaining
        )

    async def active_forms_for(self, principal: Principal) -> List[ActiveForm]:
        process = await self._machine.resolve_active(principal)
        return await self.active_forms(process.id)

    # ------------------------------------------------------------------
    # Progress and termination
    async def report_progress(
        self,
        process_id: str,
        progress: Optional[int] = None,
        status: Optional[ProcessStatus | str] = None,
    ) -> ProcessRecord:
        """Apply a worker progress report.

        Raises:
            ValidationError: neither field given, progress out of range or
                unknown status.
            StateError: the status change is not a legal transition.
        """
        if progress is None and not status:
            raise ValidationError("Missing required fields: progress or status")
        if progress is not None and (
            isinstance(progress, bool) or not isinstance(progress, int) or not 0 <= progress <= 100
        ):
            raise ValidationError("progress must be an integer between 0 and 100")
        target: Optional[ProcessStatus] = None
        if status:
            try:
                target = ProcessStatus(status)
            except ValueError:
                raise ValidationError(
                    "Invalid status value",
                    {"validValues": [s.value for s in ProcessStatus]},
                ) from None

        process = await self._machine.get(process_id)
        if target is not None and target != process.status:
            updated = await self._machine.transition(process_id, target, progress=progress)
        elif progress is not None:
            updated = await self._machine.update_progress(process_id, progress)
        else:
            updated = process

        await self._notifications.publish(updated.user_id, PROCESS_UPDATE_EVENT, updated)
        if target in END_STATES and target != process.status:
            await self._tokens.complete_for_process(process_id)
            if target == ProcessStatus.FAILED:
                await self._notifications.notify(
                    updated.user_id, "Process failed", NotificationType.ERROR
                )
            else:
                await self._notifications.notify(
                    updated.user_id, "Process completed successfully", NotificationType.SUCCESS
                )
        return updated

    async def report_termination(
        self, identity: WorkerIdentity, reason: Optional[str] = None
    ) -> ProcessRecord:
        """Worker-initiated shutdown: the process fails and its token closes."""
        process = await self._machine.get(identity.process_id)
        if process.user_id != identity.user_id:
            raise ValidationError("Process does not belong to the token's user")
        if process.status != ProcessStatus.FAILED:
            process = await self._machine.transition(process.id, ProcessStatus.FAILED)
        await self._tokens.complete_for_process(process.id)

        message = "Process terminated by the automation worker"
        if reason:
            message = f"{message}: {reason}"
        await self._notifications.notify(identity.user_id, message, NotificationType.ERROR)
        await self._notifications.publish(identity.user_id, PROCESS_UPDATE_EVENT, process)
        logger.info(f"Process {process.id} terminated by worker")
        return process

    # ------------------------------------------------------------------
    # Worker notifications and status pushes
    async def report_notification(
        self,
        identity: WorkerIdentity,
        message: str,
        type: Optional[str] = None,
        options: Optional[Iterable[str]] = None,
        timeout: Optional[float] = None,
        thread_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Notification raised by the worker.

        An unknown ``type`` falls back to ``info``. When ``options`` are
        given the notification also becomes a confirmation dialog form.
        """
        if not message:
            raise ValidationError("Missing message")
        try:
            notification_type = NotificationType((type or "info").lower())
        except ValueError:
            notification_type = NotificationType.INFO

        notification = await self._notifications.notify(
            identity.user_id, message, notification_type
        )
        result: Dict[str, Any] = {"notification": notification, "form": None}

        options = list(options or [])
        if options:
            data: Dict[str, Any] = {"message": message, "options": options}
            if timeout is not None:
                data["timeout"] = timeout
            result["form"] = await self.dispatch(
                identity.process_id,
                identity.user_id,
                EventName.CONFIRMATION_DIALOG,
                "waiting",
                "notification",
                data,
                thread_id=thread_id or new_id(),
            )
        return result

    async def report_form(
        self,
        identity: WorkerIdentity,
        options: Any,
        type: Optional[str],
        thread_id: Optional[str] = None,
        message: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> ProcessEvent:
        """Form requested by the worker, recorded and pushed as a ``forms`` frame.

        ``verification_method`` forms offer the known verification methods
        found in ``options``; unknown entries are dropped. ``verification``
        forms ask for a code.
        """
        if options is None or not type:
            raise ValidationError("Missing required fields: options and type")
        if not isinstance(options, list):
            raise ValidationError("Options must be an array")
        try:
            form_type = FormType(type)
        except ValueError:
            raise ValidationError(
                f"Invalid form type: {type}",
                {"validValues": [t.value for t in FormType]},
            ) from None
        valid_options = [
            option.lower()
            for option in options
            if isinstance(option, str) and option.lower() in VERIFICATION_OPTION_TYPES
        ]

        if form_type == FormType.VERIFICATION_METHOD:
            name = EventName.VERIFICATION_OPTIONS
            default_message = "Select a verification method"
        else:
            name = EventName.VERIFICATION_CODE
            default_message = "Enter the verification code"
        data: Dict[str, Any] = {
            "message": message or default_message,
            "options": valid_options,
            "type": form_type.value,
        }
        if timeout is not None:
            data["timeout"] = timeout
        thread_id = thread_id or new_id()

        event = self._build_event(
            identity.process_id, name, "waiting", "forms", data, None, thread_id
        )
        await self._repository.add_event(event)
        await self._notifications.publish(
            identity.user_id,
            FORMS_EVENT,
            {
                "options": valid_options,
                "type": form_type.value,
                "thread_id": thread_id,
                "processId": identity.process_id,
            },
        )
        logger.info(
            f"Recorded {form_type.value} form {event.id} for process_id={identity.process_id}"
        )
        return event

    async def report_status_update(
        self, identity: WorkerIdentity, kind: str, item_id: str, status: str
    ) -> ProcessEvent:
        """Match or transfer status pushed by the worker."""
        event_name = STATUS_UPDATE_EVENTS.get((kind or "").lower())
        if event_name is None:
            raise ValidationError(
                f"Unknown status update kind: {kind}",
                {"validValues": sorted(STATUS_UPDATE_EVENTS)},
            )
        if not item_id or not status:
            raise ValidationError("Missing id or status")

        event = ProcessEvent(
            process_id=identity.process_id,
            event_name=event_name,
            status=status,
            process_stage="status_update",
            data={"id": item_id, "status": status},
            created_at=self._clock(),
        )
        await self._repository.add_event(event)
        await self._notifications.publish(
            identity.user_id,
            SHOW_DETAILS_EVENT,
            {"type": kind.lower(), "id": item_id, "status": status, "processId": identity.process_id},
        )
        return event

    async def request_transfer_confirmation(
        self, identity: WorkerIdentity, data: Dict[str, Any]
    ) -> None:
        if not data:
            raise ValidationError("Missing transfer details")
        await self._notifications.publish(
            identity.user_id,
            CONFIRM_TRANSFER_EVENT,
            {**data, "processId": identity.process_id},
        )


def _latest_per_thread(events: Iterable[ProcessEvent]) -> List[ProcessEvent]:
    """Keep the newest event per ``thread_id``; thread-less events stand alone."""
    latest: Dict[str, ProcessEvent] = {}
    ordered: List[Any] = []
    for event in events:
        if event.thread_id is None:
            ordered.append(event)
            continue
        if event.thread_id not in latest:
            ordered.append(event.thread_id)
        latest[event.thread_id] = event
    return [latest[item] if isinstance(item, str) else item for item in ordered]


def _event_name(value: EventName | str) -> EventName:
    try:
        return EventName(value)
    except ValueError:
        raise ValidationError(
            f"Unknown event: {value}",
            {"validValues": [e.value for e in EventName]},
        ) from None
