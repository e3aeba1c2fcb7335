class TcpServeError(Exception):
    pass


class MalformedListenSpec(TcpServeError, ValueError):
    def __init__(self, spec: str, reason: str) -> None:
        super().__init__(f"Malformed listen spec '{spec}': {reason}")
        self.spec = spec
        self.reason = reason


class EngineLoadError(TcpServeError):
    pass


class EngineError(TcpServeError):
    pass


class ConnectionNotFound(TcpServeError, KeyError):
    def __init__(self, connection_id: str) -> None:
        super().__init__(connection_id)
        self.connection_id = connection_id

    def __str__(self) -> str:
        return f"Connection '{self.connection_id}' not found"


class HandlerFailure(TcpServeError):
    def __init__(self, kind: str, connection_id: str, handler: object) -> None:
        name = getattr(handler, "__qualname__", repr(handler))
        super().__init__(f"Handler {name} failed on '{kind}' for connection {connection_id}")
        self.kind = kind
        self.connection_id = connection_id
        self.handler = handler


class TransportError(TcpServeError):
    pass


class HandleExpired(TcpServeError):
    pass
