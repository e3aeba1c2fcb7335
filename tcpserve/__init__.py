from tcpserve.bootstrap.main import entrypoint, run
from tcpserve.core.config import Config
from tcpserve.core.exception import (
    ConnectionNotFound,
    EngineError,
    EngineLoadError,
    HandleExpired,
    HandlerFailure,
    MalformedListenSpec,
    TcpServeError,
    TransportError,
)
from tcpserve.core.listen import parse_listen
from tcpserve.core.model.event import CloseEvent, ConnectEvent, ErrorEvent, Event, EventKind, ReadEvent, TimeoutEvent
from tcpserve.core.model.listener import ListenerSpec, Scheme, TLSOptions
from tcpserve.core.server import Server

__version__ = "0.5.0"

__all__ = [
    "CloseEvent",
    "Config",
    "ConnectEvent",
    "ConnectionNotFound",
    "EngineError",
    "EngineLoadError",
    "ErrorEvent",
    "Event",
    "EventKind",
    "HandleExpired",
    "HandlerFailure",
    "ListenerSpec",
    "MalformedListenSpec",
    "ReadEvent",
    "Scheme",
    "Server",
    "TLSOptions",
    "TcpServeError",
    "TimeoutEvent",
    "TransportError",
    "entrypoint",
    "parse_listen",
    "run",
]
