import ipaddress
import threading
import time
from collections import defaultdict
from datetime import datetime, timedelta, UTC
from pathlib import Path
from typing import Callable

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from tcpserve.core.model.event import EventKind
from tcpserve.core.model.listener import ListenerOptions
from tcpserve.core.server import Server


class FakeStream:
    def __init__(self, peername: tuple[str, int] = ("127.0.0.1", 40000)) -> None:
        self.peername = peername
        self.callbacks: defaultdict[EventKind, list[Callable[..., None]]] = defaultdict(list)
        self.written: list[bytes] = []
        self.closed = False
        self.inactivity_timeout: float | None = None

    def on(self, kind: EventKind, callback: Callable[..., None]) -> None:
        self.callbacks[EventKind(kind)].append(callback)

    def timeout(self, seconds: float) -> None:
        self.inactivity_timeout = seconds

    def write(self, data: bytes) -> None:
        self.written.append(data)

    def close(self) -> None:
        self.closed = True

    def fire(self, kind: EventKind, *args: object) -> None:
        for callback in list(self.callbacks[kind]):
            callback(self, *args)


class FakeAcceptor:
    def __init__(self, options: ListenerOptions) -> None:
        self.options = options
        self.sockname = (options.get("address", "0.0.0.0"), options["port"])
        self.closed = False

    def close(self) -> None:
        self.closed = True


class FakeEngine:
    backlog = 64
    inactivity_timeout = 30.0

    def __init__(self, fail_on_port: int | None = None) -> None:
        self.registered: list[tuple[ListenerOptions, Callable[..., None], FakeAcceptor]] = []
        self.fail_on_port = fail_on_port
        self.stop_calls = 0
        self.run_calls = 0
        self.setuidgid_calls = 0
        self.on_run: Callable[[FakeEngine], None] | None = None

    def server(self, options: ListenerOptions, on_accept: Callable[..., None]) -> FakeAcceptor:
        if options["port"] == self.fail_on_port:
            raise OSError(f"Address already in use: {options['port']}")
        acceptor = FakeAcceptor(options)
        self.registered.append((options, on_accept, acceptor))
        return acceptor

    def accept(self, index: int = 0) -> FakeStream:
        stream = FakeStream()
        self.registered[index][1](stream)
        return stream

    def run(self) -> None:
        self.run_calls += 1
        if self.on_run is not None:
            self.on_run(self)

    def stop(self) -> None:
        self.stop_calls += 1

    def setuidgid(self) -> None:
        self.setuidgid_calls += 1


@pytest.fixture
def fake_engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def fake_stream() -> Callable[[], FakeStream]:
    return FakeStream


@pytest.fixture
def serve():
    """
    Start a server on a background thread; the event loop runs there until
    the test ends.
    """
    running: list[tuple[Server, threading.Thread]] = []

    def _serve(server: Server) -> int:
        server.start()
        thread = threading.Thread(target=server.run, daemon=True)
        thread.start()

        deadline = time.monotonic() + 5
        while not server.engine.loop.is_running() and time.monotonic() < deadline:
            time.sleep(0.01)

        running.append((server, thread))
        return server.ports[0]

    yield _serve

    for server, thread in running:
        server.stop()
        thread.join(timeout=10)
        server.engine.close()


@pytest.fixture(scope="session")
def certificate(tmp_path_factory: pytest.TempPathFactory) -> tuple[Path, Path]:
    directory = tmp_path_factory.mktemp("tls")
    certfile = directory / "server.crt"
    keyfile = directory / "server.key"

    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "localhost")])

    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(datetime.now(tz=UTC) - timedelta(minutes=1))
        .not_valid_after(datetime.now(tz=UTC) + timedelta(days=1))
        .add_extension(
            x509.SubjectAlternativeName([
                x509.DNSName("localhost"),
                x509.IPAddress(ipaddress.ip_address("127.0.0.1")),
            ]),
            critical=False,
        )
        .sign(private_key=key, algorithm=hashes.SHA256())
    )

    keyfile.write_bytes(
        key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        )
    )
    certfile.write_bytes(cert.public_bytes(serialization.Encoding.PEM))

    return certfile, keyfile
