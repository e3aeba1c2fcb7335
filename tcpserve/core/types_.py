from typing import Callable, Protocol

from tcpserve.core.model.event import Event, EventKind
from tcpserve.core.model.listener import ListenerOptions

EventHandler = Callable[[Event], None]


class Stream(Protocol):
    """
    Per-connection handle owned by the engine.

    Callbacks registered with ``on`` are invoked as ``read(stream, data)``,
    ``error(stream, message)``, ``close(stream)`` and ``timeout(stream)``.
    """

    def write(self, data: bytes) -> None:
        ...

    def close(self) -> None:
        ...

    def timeout(self, seconds: float) -> None:
        ...

    def on(self, kind: EventKind, callback: Callable[..., None]) -> None:
        ...


AcceptCallback = Callable[[Stream], None]


class Acceptor(Protocol):
    @property
    def sockname(self) -> tuple[str, int] | None:
        ...

    def close(self) -> None:
        ...


class Engine(Protocol):
    backlog: int
    inactivity_timeout: float

    def server(self, options: ListenerOptions, on_accept: AcceptCallback) -> Acceptor:
        ...

    def run(self) -> None:
        ...

    def stop(self) -> None:
        ...

    def setuidgid(self) -> None:
        ...
