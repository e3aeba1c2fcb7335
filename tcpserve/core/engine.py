import asyncio
import concurrent.futures
import functools
import logging
import os
import socket
import threading

from tcpserve.core.exception import EngineError
from tcpserve.core.model.listener import DEFAULT_BACKLOG, ListenerOptions
from tcpserve.core.model.state import EngineState
from tcpserve.core.protocol import Stream
from tcpserve.core.types_ import AcceptCallback
from tcpserve.core.utils.addr import format_addr, get_local_addr
from tcpserve.core.utils.tls import get_server_ssl_ctx

DEFAULT_INACTIVITY_TIMEOUT = 15.0


class Acceptor:
    """
    One listening socket registered with the engine.

    The socket is bound and listening as soon as the acceptor exists; the
    ``asyncio.Server`` serving it is attached once the event loop has set it up.
    """

    def __init__(self, sock: socket.socket, options: ListenerOptions) -> None:
        self.options = options
        self.sockname = get_local_addr(sock)
        self._sock = sock
        self._server: asyncio.Server | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def serving(self) -> bool:
        return self._server is not None and self._server.is_serving()

    def attach(self, server: asyncio.Server) -> None:
        self._server = server
        if self._closed:
            server.close()

    def close(self) -> None:
        if self._closed:
            return

        self._closed = True
        if self._server is not None:
            self._server.close()
        else:
            self._sock.close()

    async def wait_closed(self) -> None:
        if self._server is not None:
            await self._server.wait_closed()

    def __repr__(self) -> str:
        return f"<Acceptor {format_addr(self.sockname)} tls={self.options['tls']}>"


class AsyncioEngine:
    """
    Engine built on an asyncio event loop.

    Listening sockets are bound synchronously so that bind errors surface to
    the caller of ``server``; serving starts on the loop. ``stop`` may be
    called from any thread or from a signal handler.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop | None = None,
        *,
        backlog: int = DEFAULT_BACKLOG,
        inactivity_timeout: float = DEFAULT_INACTIVITY_TIMEOUT,
        timeout_graceful_shutdown: float = 5.0,
        user: str | None = None,
        group: str | None = None,
    ) -> None:
        self.loop = loop or asyncio.new_event_loop()
        self.backlog = backlog
        self.inactivity_timeout = inactivity_timeout
        self.timeout_graceful_shutdown = timeout_graceful_shutdown
        self.user = user
        self.group = group

        self.state = EngineState()
        self._lock = threading.Lock()
        self._logger = logging.getLogger("tcpserve.core.engine")

    @property
    def acceptors(self) -> list[Acceptor]:
        with self._lock:
            return list(self.state.acceptors)

    @property
    def connections(self) -> set[Stream]:
        return self.state.connections

    def server(self, options: ListenerOptions, on_accept: AcceptCallback) -> Acceptor:
        if self.state.stopping:
            raise EngineError("Engine is stopped")

        ssl_ctx = get_server_ssl_ctx(options) if options["tls"] else None
        sock = self._bind(options)
        acceptor = Acceptor(sock, options)

        factory = functools.partial(Stream, on_accept, self.state.connections, self.loop)
        coro = self.loop.create_server(
            factory,
            sock=sock,
            backlog=options["backlog"],
            ssl=ssl_ctx,
        )

        if self.loop.is_running():
            future = asyncio.run_coroutine_threadsafe(coro, self.loop)
            future.add_done_callback(functools.partial(self._on_served, acceptor))
        else:
            try:
                acceptor.attach(self.loop.run_until_complete(coro))
            except OSError as ex:
                sock.close()
                raise EngineError(f"Cannot serve {acceptor}: {ex}") from ex

        with self._lock:
            # Drop acceptors closed since the last registration.
            self.state.acceptors[:] = [a for a in self.state.acceptors if not a.closed]
            self.state.acceptors.append(acceptor)

        self._logger.info(
            f"Listening on {'tcps' if options['tls'] else 'tcp'}://{format_addr(acceptor.sockname)}"
        )
        return acceptor

    def run(self) -> None:
        self.loop.run_until_complete(self._serve())

    def stop(self) -> None:
        with self._lock:
            if self.state.stopping:
                return
            self.state.stopping = True

        self._logger.info("Stopping engine")

        if self.loop.is_running():
            self.loop.call_soon_threadsafe(self.state.stop_event.set)
        else:
            self._close_acceptors()
            self.state.stop_event.set()

    @property
    def stopping(self) -> bool:
        return self.state.stopping

    def setuidgid(self) -> None:
        if self.group is None and self.user is None:
            return

        import grp
        import pwd

        if self.group is not None:
            try:
                os.setgid(grp.getgrnam(self.group).gr_gid)
            except (KeyError, OSError) as ex:
                raise EngineError(f"Cannot switch to group '{self.group}': {ex}") from ex

        if self.user is not None:
            try:
                entry = pwd.getpwnam(self.user)
                gid = os.getgid() if self.group is not None else entry.pw_gid
                if self.group is None:
                    os.setgid(gid)
                os.initgroups(self.user, gid)
                os.setuid(entry.pw_uid)
            except (KeyError, OSError) as ex:
                raise EngineError(f"Cannot switch to user '{self.user}': {ex}") from ex

        self._logger.info(f"Running as uid={os.getuid()} gid={os.getgid()}")

    def close(self) -> None:
        self._close_acceptors()
        if self.loop.is_closed():
            return

        try:
            self.loop.run_until_complete(self.loop.shutdown_asyncgens())
            self.loop.run_until_complete(self.loop.shutdown_default_executor())
        finally:
            self.loop.close()

    async def _serve(self) -> None:
        await self.state.stop_event.wait()
        await self.shutdown()

    async def shutdown(self) -> None:
        self._close_acceptors()

        for stream in self.state.connections.copy():
            stream.close()

        try:
            await asyncio.wait_for(
                self._wait_connections_closed(),
                timeout=self.timeout_graceful_shutdown
            )
        except TimeoutError:
            self._logger.error(
                f"Abort {len(self.state.connections)} connection(s), "
                f"timeout graceful shutdown exceeded"
            )
            for stream in self.state.connections.copy():
                stream.abort()
            await asyncio.sleep(0)

        for acceptor in self.acceptors:
            await acceptor.wait_closed()

    async def _wait_connections_closed(self) -> None:
        if self.state.connections:
            self._logger.info("Waiting for client connections to close.")

        while self.state.connections:
            await asyncio.sleep(0.1)

    def _close_acceptors(self) -> None:
        for acceptor in self.acceptors:
            acceptor.close()

    def _on_served(self, acceptor: Acceptor, future: concurrent.futures.Future[asyncio.Server]) -> None:
        try:
            server = future.result()
        except (OSError, concurrent.futures.CancelledError) as ex:
            self._logger.error(f"Cannot serve {acceptor}: {ex}")
            acceptor.close()
            return
        acceptor.attach(server)

    def _bind(self, options: ListenerOptions) -> socket.socket:
        host = options.get("address")
        port = options["port"]
        dualstack = host is None and socket.has_dualstack_ipv6()

        try:
            if host is None:
                family = socket.AF_INET6 if dualstack else socket.AF_INET
                address = ("::" if dualstack else "0.0.0.0", port)
            else:
                family, _, _, _, address = socket.getaddrinfo(
                    host, port, type=socket.SOCK_STREAM, flags=socket.AI_PASSIVE
                )[0]

            sock = socket.create_server(
                address,
                family=family,
                backlog=options["backlog"],
                reuse_port=options["reuse"],
                dualstack_ipv6=dualstack,
            )
        except (OSError, ValueError) as ex:
            raise EngineError(f"Cannot listen on {format_addr((host or '*', port))}: {ex}") from ex

        sock.setblocking(False)
        return sock
