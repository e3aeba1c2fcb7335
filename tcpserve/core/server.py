import logging
import signal
import threading
import weakref
from collections.abc import Iterable
from types import FrameType
from typing import Callable, Self

from tcpserve.core.config import Config
from tcpserve.core.exception import EngineLoadError
from tcpserve.core.listen import parse_listen
from tcpserve.core.model.event import EventKind
from tcpserve.core.model.listener import ListenerSpec
from tcpserve.core.model.state import ServerState
from tcpserve.core.registry import ConnectionID, ConnectionRegistry
from tcpserve.core.relay import EventEmitter, EventRelay
from tcpserve.core.types_ import AcceptCallback, Acceptor, Engine, EventHandler, Stream
from tcpserve.core.utils.pkg import import_from_string
from tcpserve.core.utils.sig import signal_handler


def load_engine(config: Config) -> Engine:
    try:
        engine_class = import_from_string(config.server_class)
    except ImportError as ex:
        raise EngineLoadError(f"Cannot load engine '{config.server_class}': {ex}") from ex

    try:
        return engine_class(**config.engine_kwargs())
    except Exception as ex:
        raise EngineLoadError(f"Cannot create engine '{config.server_class}': {ex}") from ex


class Server:
    """
    Generic TCP server.

    Every configured listen string becomes one acceptor on the engine. Each
    accepted connection gets an opaque id and its lifecycle is published as
    ``connect``, ``read``, ``error``, ``timeout`` and ``close`` events::

        server = Server(["tcp://*:9000"])

        @server.on("read")
        def echo(event: ReadEvent) -> None:
            event.stream.write(event.data)

        server.run()

    Handlers only ever see the connection id, except for ``read`` which also
    carries a write capability that expires when the handler returns. Use
    ``stream(id)`` to reach a live connection later on.
    """

    def __init__(
        self,
        listen: Iterable[str] | None = None,
        *,
        engine: Engine | None = None,
        config: Config | None = None,
    ) -> None:
        self._config = config or Config()
        self._listen = list(self._config.listen if listen is None else listen)
        self._engine = engine if engine is not None else load_engine(self._config)

        self._emitter = EventEmitter()
        self._registry = ConnectionRegistry()
        self._relay = EventRelay(self._emitter, self._registry)

        self._specs: list[ListenerSpec] = []
        self._acceptors: list[Acceptor] = []
        self._state = ServerState.CONFIGURED
        self._lock = threading.RLock()
        self._logger = logging.getLogger("tcpserve.core.server")

    @property
    def engine(self) -> Engine:
        return self._engine

    @property
    def listen(self) -> tuple[str, ...]:
        return tuple(self._listen)

    @property
    def specs(self) -> tuple[ListenerSpec, ...]:
        return tuple(self._specs)

    @property
    def acceptors(self) -> tuple[Acceptor, ...]:
        return tuple(self._acceptors)

    @property
    def ports(self) -> list[int]:
        return [acceptor.sockname[1] for acceptor in self._acceptors if acceptor.sockname]

    @property
    def state(self) -> ServerState:
        return self._state

    @property
    def connections(self) -> list[ConnectionID]:
        return self._registry.ids()

    def on(
        self,
        kind: EventKind | str,
        handler: EventHandler | None = None,
    ) -> EventHandler | Callable[[EventHandler], EventHandler]:
        return self._emitter.on(kind, handler)

    def off(self, kind: EventKind | str, handler: EventHandler) -> None:
        self._emitter.off(kind, handler)

    def stream(self, connection_id: ConnectionID) -> Stream:
        return self._registry.resolve(connection_id)

    def start(self) -> Self:
        with self._lock:
            if self._state is ServerState.STOPPED:
                raise RuntimeError("Server is stopped")
            if self._state is ServerState.LISTENING:
                return self

            # Parse everything first so a bad spec never leaves a half-listening server.
            backlog = self._engine.backlog
            specs = [parse_listen(listen, backlog) for listen in self._listen]

            on_accept = self._accept_callback()
            try:
                for spec in specs:
                    acceptor = self._engine.server(spec.to_options(), on_accept)
                    self._specs.append(spec)
                    self._acceptors.append(acceptor)
            except Exception:
                for acceptor in self._acceptors:
                    acceptor.close()
                self._specs.clear()
                self._acceptors.clear()
                raise

            self._state = ServerState.LISTENING

        self._logger.info(f"Server listening on {', '.join(spec.to_url() for spec in self._specs)}")
        return self

    def stop(self) -> Self:
        with self._lock:
            if self._state is ServerState.STOPPED:
                return self
            self._state = ServerState.STOPPED

        self._logger.info("Server stopping")
        self._engine.stop()
        return self

    def run(self) -> Self:
        ref = weakref.ref(self)

        def graceful_exit(sig: signal.Signals | int, _: FrameType | None) -> None:
            server = ref()
            if server is None:
                return
            server._logger.info(f"Received signal={sig}, shutting down")
            server.stop()

        with signal_handler(graceful_exit):
            self.start()
            try:
                self._engine.setuidgid()
            except Exception:
                self.stop()
                raise

            try:
                self._engine.run()
            finally:
                with self._lock:
                    self._state = ServerState.STOPPED
        return self

    def _accept_callback(self) -> AcceptCallback:
        ref = weakref.ref(self)

        def on_accept(stream: Stream) -> None:
            server = ref()
            if server is None:
                stream.close()
                return
            server._relay.attach(stream, server._engine.inactivity_timeout)

        return on_accept
