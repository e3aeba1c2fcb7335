import asyncio
import socket


def get_remote_addr(transport: asyncio.BaseTransport) -> tuple[str, int] | None:
    sock = transport.get_extra_info("socket")
    if sock is not None:
        try:
            info = sock.getpeername()
        except OSError:
            return None
    else:
        info = transport.get_extra_info("peername")

    if isinstance(info, tuple) and len(info) >= 2:
        return info[0], info[1]
    return None


def get_local_addr(sock: socket.socket) -> tuple[str, int] | None:
    try:
        info = sock.getsockname()
    except OSError:
        return None

    if isinstance(info, tuple) and len(info) >= 2:
        return info[0], info[1]
    return None


def format_addr(addr: tuple[str, int] | None) -> str:
    if addr is None:
        return "unknown"

    host, port = addr
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def get_stream_peer(stream: object) -> str:
    return format_addr(getattr(stream, "peername", None))
