import asyncio
import logging
from collections import defaultdict
from typing import Callable

from tcpserve.core.exception import TransportError
from tcpserve.core.model.event import EventKind
from tcpserve.core.types_ import AcceptCallback
from tcpserve.core.utils.addr import format_addr, get_remote_addr

StreamCallback = Callable[..., None]


class Stream(asyncio.Protocol):
    """
    Engine-side connection handle.

    Callbacks are invoked as ``read(stream, data)``, ``error(stream, message)``,
    ``timeout(stream)`` and ``close(stream)``. A lost connection with an
    exception reports ``error`` before ``close``. The inactivity timer is
    reset by reads and writes; when it elapses ``timeout`` fires and the
    stream is closed.
    """

    def __init__(
        self,
        on_accept: AcceptCallback,
        connections: "set[Stream]",
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        self._transport: asyncio.Transport = None   # type: ignore[assignment]
        self._timer: asyncio.TimerHandle | None = None

        self._on_accept = on_accept
        self._connections = connections
        self._loop = loop
        self._callbacks: defaultdict[EventKind, list[StreamCallback]] = defaultdict(list)
        self._inactivity_timeout = 0.0
        self._last_activity = 0.0
        self._closed = False
        self.peername: tuple[str, int] | None = None
        self._logger = logging.getLogger("tcpserve.core.transport")

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self._transport = transport  # type: ignore[assignment]
        self._last_activity = self._loop.time()
        self.peername = get_remote_addr(transport)
        self._connections.add(self)

        self._logger.debug(f"Connection made: {format_addr(self.peername)}")

        try:
            self._on_accept(self)
        except Exception as exc:
            self._logger.error("Exception in accept callback", exc_info=exc)
            self._transport.close()

    def connection_lost(self, exc: Exception | None) -> None:
        self._connections.discard(self)
        self._closed = True
        self._cancel_timer()

        self._logger.debug(f"Connection lost: {format_addr(self.peername)}")

        if exc is not None:
            self._dispatch(EventKind.ERROR, str(exc) or type(exc).__name__)
        self._dispatch(EventKind.CLOSE)
        self._callbacks.clear()

    def data_received(self, data: bytes) -> None:
        self._last_activity = self._loop.time()
        self._dispatch(EventKind.READ, data)

    def eof_received(self) -> bool | None:
        # Half-closed peers are closed on our side as well.
        return None

    @property
    def closed(self) -> bool:
        return self._closed or self._transport is None or self._transport.is_closing()

    def write(self, data: bytes) -> None:
        if self.closed:
            raise TransportError(f"Cannot write to closed connection {format_addr(self.peername)}")

        self._transport.write(data)
        self._last_activity = self._loop.time()

    def close(self) -> None:
        if not self.closed:
            self._transport.close()

    def abort(self) -> None:
        if self._transport is not None and not self._closed:
            self._transport.abort()

    def timeout(self, seconds: float) -> None:
        self._inactivity_timeout = seconds
        self._cancel_timer()
        if seconds > 0 and not self._closed:
            self._last_activity = self._loop.time()
            self._timer = self._loop.call_later(seconds, self._check_inactivity)

    def on(self, kind: EventKind | str, callback: StreamCallback) -> None:
        self._callbacks[EventKind(kind)].append(callback)

    def _check_inactivity(self) -> None:
        self._timer = None
        if self._closed:
            return

        remaining = self._last_activity + self._inactivity_timeout - self._loop.time()
        if remaining > 0:
            self._timer = self._loop.call_later(remaining, self._check_inactivity)
            return

        self._logger.debug(f"Inactivity timeout: {format_addr(self.peername)}")
        self._dispatch(EventKind.TIMEOUT)
        self.close()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _dispatch(self, kind: EventKind, *args: object) -> None:
        for callback in list(self._callbacks[kind]):
            try:
                callback(self, *args)
            except Exception as exc:
                self._logger.error(f"Exception in '{kind.value}' callback", exc_info=exc)
