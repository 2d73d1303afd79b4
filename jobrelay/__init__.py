"""jobrelay: coordinate external automation workers with web clients."""

from .config import JobRelayConfig, load_config
from .contracts import EventName, Principal, ProcessStatus, Role, WorkerIdentity
from .dispatch import CommandDispatcher, CommandKind
from .fanout import get_fanout
from .ingestion import EventIngestion
from .machine import ProcessStateMachine
from .notifications import NotificationService
from .persistence import get_repository
from .ratelimit import get_rate_limiter
from .security import ApiKeyAuthority, TokenAuthority

__version__ = "0.1.0"
__all__ = [
    "ApiKeyAuthority",
    "CommandDispatcher",
    "CommandKind",
    "EventIngestion",
    "EventName",
    "JobRelayConfig",
    "NotificationService",
    "Principal",
    "ProcessStateMachine",
    "ProcessStatus",
    "Role",
    "TokenAuthority",
    "WorkerIdentity",
    "get_fanout",
    "get_rate_limiter",
    "get_repository",
    "load_config",
]
