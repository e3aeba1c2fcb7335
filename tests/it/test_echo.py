import socket
import ssl
import threading
import time
from urllib.parse import quote

import pytest

from tcpserve.core.config import Config
from tcpserve.core.exception import TransportError
from tcpserve.core.model.event import ReadEvent
from tcpserve.core.model.state import ServerState
from tcpserve.core.server import Server


class Recorder:
    def __init__(self, server: Server) -> None:
        self.events = []
        self.closed = threading.Event()
        self._lock = threading.Lock()
        for kind in ("connect", "error", "timeout", "close"):
            server.on(kind, self.record)

    def record(self, event) -> None:
        with self._lock:
            self.events.append((event.kind.value, event.id))
        if event.kind.value == "close":
            self.closed.set()

    def kinds(self, connection_id: str) -> list[str]:
        with self._lock:
            return [kind for kind, cid in self.events if cid == connection_id]

    def ids(self) -> list[str]:
        with self._lock:
            return [cid for kind, cid in self.events if kind == "connect"]


def wait_for(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def echo(event: ReadEvent) -> None:
    event.stream.write(event.data)


@pytest.mark.it
def test_echo_roundtrip(serve):
    server = Server(config=Config(listen=["tcp://127.0.0.1:0"]))
    recorder = Recorder(server)
    server.on("read", echo)
    port = serve(server)

    with socket.create_connection(("127.0.0.1", port), timeout=5) as client:
        client.sendall(b"ping")
        assert client.recv(4) == b"ping"

    assert recorder.closed.wait(5)
    time.sleep(0.1)

    [connection_id] = recorder.ids()
    assert recorder.kinds(connection_id) == ["connect", "close"]


@pytest.mark.it
def test_deferred_write_through_connection_id(serve):
    server = Server(config=Config(listen=["tcp://127.0.0.1:0"]))

    @server.on("read")
    def reply(event: ReadEvent) -> None:
        server.stream(event.id).write(event.data.upper())

    port = serve(server)

    with socket.create_connection(("127.0.0.1", port), timeout=5) as client:
        client.sendall(b"pong")
        assert client.recv(4) == b"PONG"


@pytest.mark.it
def test_failing_handler_does_not_affect_other_connections(serve):
    server = Server(config=Config(listen=["tcp://127.0.0.1:0"]))
    recorder = Recorder(server)

    @server.on("read")
    def maybe_explode(event: ReadEvent) -> None:
        if event.data == b"boom":
            raise RuntimeError("handler failure")

    server.on("read", echo)
    port = serve(server)

    with socket.create_connection(("127.0.0.1", port), timeout=5) as bad, \
            socket.create_connection(("127.0.0.1", port), timeout=5) as good:
        bad.sendall(b"boom")
        good.sendall(b"fine")
        assert good.recv(4) == b"fine"
        assert bad.recv(4) == b"boom"

    assert wait_for(lambda: len([k for k, _ in recorder.events if k == "close"]) == 2)
    for connection_id in recorder.ids():
        assert recorder.kinds(connection_id) == ["connect", "close"]


@pytest.mark.it
def test_inactivity_timeout_closes_connection(serve):
    server = Server(config=Config(listen=["tcp://127.0.0.1:0"], inactivity_timeout=0.2))
    recorder = Recorder(server)
    port = serve(server)

    with socket.create_connection(("127.0.0.1", port), timeout=5) as client:
        assert client.recv(1) == b""

    assert recorder.closed.wait(5)
    [connection_id] = recorder.ids()
    assert recorder.kinds(connection_id) == ["connect", "timeout", "close"]


@pytest.mark.it
def test_stop_closes_open_connections(serve):
    server = Server(config=Config(listen=["tcp://127.0.0.1:0"], timeout_graceful_shutdown=1.0))
    recorder = Recorder(server)
    port = serve(server)

    with socket.create_connection(("127.0.0.1", port), timeout=5) as client:
        assert wait_for(lambda: len(recorder.ids()) == 1)
        server.stop()
        assert client.recv(1) == b""

    assert recorder.closed.wait(5)
    assert server.state is ServerState.STOPPED

    with pytest.raises(OSError):
        socket.create_connection(("127.0.0.1", port), timeout=1).close()


@pytest.mark.it
def test_write_after_close_fails(serve):
    server = Server(config=Config(listen=["tcp://127.0.0.1:0"]))
    failures = []

    @server.on("read")
    def close_then_write(event: ReadEvent) -> None:
        event.stream.close()
        try:
            event.stream.write(b"late")
        except TransportError as ex:
            failures.append(ex)

    port = serve(server)

    with socket.create_connection(("127.0.0.1", port), timeout=5) as client:
        client.sendall(b"x")
        assert client.recv(1) == b""

    assert len(failures) == 1


@pytest.mark.it
def test_tls_echo(serve, certificate):
    certfile, keyfile = certificate
    listen = f"tcps://127.0.0.1:0?cert={quote(str(certfile))}&key={quote(str(keyfile))}"
    server = Server(config=Config(listen=[listen]))
    recorder = Recorder(server)
    server.on("read", echo)
    port = serve(server)

    ctx = ssl.create_default_context(ssl.Purpose.SERVER_AUTH)
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE

    with socket.create_connection(("127.0.0.1", port), timeout=5) as raw:
        with ctx.wrap_socket(raw, server_hostname="localhost") as client:
            client.sendall(b"ping")
            assert client.recv(4) == b"ping"

    assert recorder.closed.wait(5)
    [connection_id] = recorder.ids()
    assert recorder.kinds(connection_id)[0] == "connect"
    assert recorder.kinds(connection_id)[-1] == "close"
