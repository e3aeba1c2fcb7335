from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, ClassVar, TypeAlias

if TYPE_CHECKING:
    from tcpserve.core.relay import Responder


class EventKind(Enum):
    CONNECT = "connect"
    READ    = "read"
    CLOSE   = "close"
    ERROR   = "error"
    TIMEOUT = "timeout"


@dataclass(frozen=True, slots=True)
class ConnectEvent:
    kind: ClassVar[EventKind] = EventKind.CONNECT
    id: str


@dataclass(frozen=True, slots=True)
class ReadEvent:
    """
    ``stream`` is only valid while the handlers of this event run. Keep the
    ``id`` and go through ``Server.stream`` for deferred access.
    """

    kind: ClassVar[EventKind] = EventKind.READ
    id: str
    data: bytes
    stream: "Responder"


@dataclass(frozen=True, slots=True)
class CloseEvent:
    kind: ClassVar[EventKind] = EventKind.CLOSE
    id: str


@dataclass(frozen=True, slots=True)
class ErrorEvent:
    kind: ClassVar[EventKind] = EventKind.ERROR
    id: str
    message: str


@dataclass(frozen=True, slots=True)
class TimeoutEvent:
    kind: ClassVar[EventKind] = EventKind.TIMEOUT
    id: str


Event: TypeAlias = ConnectEvent | ReadEvent | CloseEvent | ErrorEvent | TimeoutEvent
