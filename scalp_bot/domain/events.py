# scalp_bot/domain/events.py

"""
Domain Layer: Gateway Frames
Single Source of Truth для опкодов шлюза и типизированных фреймов.
Каждому опкоду соответствует свой вариант с собственной формой payload.
"""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, Optional, Union


class GatewayOpcode(IntEnum):
    DISPATCH = 0
    HEARTBEAT = 1
    IDENTIFY = 2
    RESUME = 6
    RECONNECT = 7
    INVALID_SESSION = 9
    HELLO = 10
    HEARTBEAT_ACK = 11


class DispatchEvent:
    READY = "READY"
    RESUMED = "RESUMED"
    MESSAGE_CREATE = "MESSAGE_CREATE"


class ConnectionPhase(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AWAITING_HELLO = "awaiting_hello"
    IDENTIFYING = "identifying"
    RESUMING = "resuming"
    AUTHENTICATED = "authenticated"
    FATAL_CLOSED = "fatal_closed"


@dataclass
class SessionState:
    """Состояние сессии. Живет между реконнектами, чтобы можно было сделать resume."""
    session_id: str = ""
    resume_url: str = ""
    last_sequence: Optional[int] = None

    def can_resume(self) -> bool:
        return bool(self.session_id and self.resume_url)

    def reset(self):
        self.session_id = ""
        self.resume_url = ""
        self.last_sequence = None


@dataclass(frozen=True)
class Hello:
    heartbeat_interval_ms: int
    seq: Optional[int] = None


@dataclass(frozen=True)
class HeartbeatRequest:
    seq: Optional[int] = None


@dataclass(frozen=True)
class HeartbeatAck:
    seq: Optional[int] = None


@dataclass(frozen=True)
class Dispatch:
    event: str
    data: Dict[str, Any] = field(default_factory=dict)
    seq: Optional[int] = None


@dataclass(frozen=True)
class Reconnect:
    seq: Optional[int] = None


@dataclass(frozen=True)
class InvalidSession:
    resumable: bool
    seq: Optional[int] = None


@dataclass(frozen=True)
class UnknownFrame:
    op: Any
    reason: str = ""
    seq: Optional[int] = None


Frame = Union[Hello, HeartbeatRequest, HeartbeatAck, Dispatch, Reconnect, InvalidSession, UnknownFrame]
