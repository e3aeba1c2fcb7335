import socket

import pytest

from tcpserve.core.engine import AsyncioEngine
from tcpserve.core.exception import EngineError
from tcpserve.core.listen import parse_listen


@pytest.fixture
def engine():
    engine = AsyncioEngine(backlog=8, timeout_graceful_shutdown=0.5)
    yield engine
    engine.stop()
    engine.close()


def options(url: str):
    return parse_listen(url, backlog=8).to_options()


@pytest.mark.it
def test_acceptor_binds_synchronously(engine):
    acceptor = engine.server(options("tcp://127.0.0.1:0"), lambda stream: None)

    host, port = acceptor.sockname
    assert host == "127.0.0.1"
    assert port > 0
    assert acceptor.serving
    assert engine.acceptors == [acceptor]


@pytest.mark.it
def test_port_in_use_is_an_engine_error(engine):
    acceptor = engine.server(options("tcp://127.0.0.1:0"), lambda stream: None)
    port = acceptor.sockname[1]

    with pytest.raises(EngineError, match="Cannot listen"):
        engine.server(options(f"tcp://127.0.0.1:{port}"), lambda stream: None)


@pytest.mark.it
@pytest.mark.skipif(not hasattr(socket, "SO_REUSEPORT"), reason="SO_REUSEPORT unavailable")
def test_reuse_allows_shared_port(engine):
    first = engine.server(options("tcp://127.0.0.1:0?reuse=1"), lambda stream: None)
    port = first.sockname[1]

    second = engine.server(options(f"tcp://127.0.0.1:{port}?reuse=1"), lambda stream: None)

    assert second.sockname[1] == port


@pytest.mark.it
def test_closed_acceptors_are_pruned_on_next_registration(engine):
    for _ in range(3):
        engine.server(options("tcp://127.0.0.1:0"), lambda stream: None).close()

    acceptor = engine.server(options("tcp://127.0.0.1:0"), lambda stream: None)

    assert engine.acceptors == [acceptor]


@pytest.mark.it
def test_tls_listener_without_certificate_fails(engine):
    with pytest.raises(EngineError):
        engine.server(options("tcps://127.0.0.1:0"), lambda stream: None)
    assert engine.acceptors == []


@pytest.mark.it
def test_stop_before_run_releases_acceptors(engine):
    acceptor = engine.server(options("tcp://127.0.0.1:0"), lambda stream: None)
    port = acceptor.sockname[1]

    engine.stop()
    engine.stop()
    engine.run()

    assert acceptor.closed
    with pytest.raises(OSError):
        socket.create_connection(("127.0.0.1", port), timeout=1).close()


@pytest.mark.it
def test_stopped_engine_refuses_new_acceptors(engine):
    engine.stop()
    with pytest.raises(EngineError):
        engine.server(options("tcp://127.0.0.1:0"), lambda stream: None)


@pytest.mark.it
def test_privilege_drop_is_noop_without_user(engine):
    engine.setuidgid()


@pytest.mark.it
def test_unknown_user_is_an_engine_error():
    engine = AsyncioEngine(user="tcpserve-no-such-user")
    try:
        with pytest.raises(EngineError, match="tcpserve-no-such-user"):
            engine.setuidgid()
    finally:
        engine.close()
