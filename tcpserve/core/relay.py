import logging
import threading
import weakref
from typing import Callable

from tcpserve.core.exception import ConnectionNotFound, HandleExpired, HandlerFailure
from tcpserve.core.model.event import (
    CloseEvent,
    ConnectEvent,
    ErrorEvent,
    Event,
    EventKind,
    ReadEvent,
    TimeoutEvent,
)
from tcpserve.core.registry import ConnectionID, ConnectionRegistry
from tcpserve.core.types_ import EventHandler, Stream
from tcpserve.core.utils.addr import get_stream_peer


class EventEmitter:
    """
    Public subscription surface: one ordered handler list per event kind.

    A handler raising an exception is logged and skipped; the remaining
    handlers still see the event.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handlers: dict[EventKind, list[EventHandler]] = {kind: [] for kind in EventKind}
        self._logger = logging.getLogger("tcpserve.core.relay")

    def on(
        self,
        kind: EventKind | str,
        handler: EventHandler | None = None,
    ) -> EventHandler | Callable[[EventHandler], EventHandler]:
        kind = EventKind(kind)

        def decorator(func: EventHandler) -> EventHandler:
            with self._lock:
                self._handlers[kind].append(func)
            return func

        if handler is None:
            return decorator
        return decorator(handler)

    def off(self, kind: EventKind | str, handler: EventHandler) -> None:
        kind = EventKind(kind)
        with self._lock:
            self._handlers[kind].remove(handler)

    def handlers(self, kind: EventKind | str) -> tuple[EventHandler, ...]:
        with self._lock:
            return tuple(self._handlers[EventKind(kind)])

    def emit(self, event: Event) -> None:
        for handler in self.handlers(event.kind):
            try:
                handler(event)
            except Exception as exc:
                failure = HandlerFailure(event.kind.value, event.id, handler)
                self._logger.error(str(failure), exc_info=exc)


class Responder:
    """
    Write capability handed to ``read`` handlers.

    It expires as soon as the handlers of the event have returned; any later
    use raises ``HandleExpired``.
    """

    __slots__ = ("id", "_stream")

    def __init__(self, connection_id: ConnectionID, stream: Stream) -> None:
        self.id = connection_id
        self._stream: Stream | None = stream

    @property
    def expired(self) -> bool:
        return self._stream is None

    def write(self, data: bytes) -> None:
        self._live().write(data)

    def close(self) -> None:
        self._live().close()

    def expire(self) -> None:
        self._stream = None

    def _live(self) -> Stream:
        if self._stream is None:
            raise HandleExpired(
                f"Stream of connection {self.id} used after its read callback returned"
            )
        return self._stream


class EventRelay:
    """
    Re-emits the engine's per-connection callbacks as public events keyed by
    connection id.

    Events for ids no longer in the registry are dropped, so ``connect`` is
    always first and ``close`` is emitted exactly once.
    """

    def __init__(self, emitter: EventEmitter, registry: ConnectionRegistry) -> None:
        self._emitter = emitter
        self._registry = registry
        self._logger = logging.getLogger("tcpserve.core.relay")

    def attach(self, stream: Stream, inactivity_timeout: float) -> ConnectionID:
        connection_id = self._registry.register(stream)
        self._emitter.emit(ConnectEvent(connection_id))

        self._logger.debug(f"Accept ({get_stream_peer(stream)}) as {connection_id}")

        stream.timeout(inactivity_timeout)

        ref = weakref.ref(self)
        stream.on(EventKind.CLOSE, _forward(ref, "on_close", connection_id))
        stream.on(EventKind.ERROR, _forward(ref, "on_error", connection_id))
        stream.on(EventKind.READ, _forward(ref, "on_read", connection_id))
        stream.on(EventKind.TIMEOUT, _forward(ref, "on_timeout", connection_id))

        return connection_id

    def on_read(self, connection_id: ConnectionID, stream: Stream, data: bytes) -> None:
        if connection_id not in self._registry:
            return

        responder = Responder(connection_id, stream)
        try:
            self._emitter.emit(ReadEvent(connection_id, bytes(data), responder))
        finally:
            responder.expire()

    def on_error(self, connection_id: ConnectionID, stream: Stream, message: str) -> None:
        if connection_id not in self._registry:
            return

        self._logger.debug(f"Connection {connection_id} error: {message}")
        self._emitter.emit(ErrorEvent(connection_id, message))

    def on_timeout(self, connection_id: ConnectionID, stream: Stream) -> None:
        if connection_id not in self._registry:
            return

        self._emitter.emit(TimeoutEvent(connection_id))

    def on_close(self, connection_id: ConnectionID, stream: Stream) -> None:
        try:
            self._registry.release(connection_id)
        except ConnectionNotFound:
            return

        self._emitter.emit(CloseEvent(connection_id))


def _forward(
    ref: weakref.ref[EventRelay],
    name: str,
    connection_id: ConnectionID,
) -> Callable[..., None]:
    def callback(stream: Stream, *args: object) -> None:
        relay = ref()
        if relay is None:
            return
        getattr(relay, name)(connection_id, stream, *args)

    return callback
