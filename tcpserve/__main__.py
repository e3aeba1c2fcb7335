import logging

from tcpserve import CloseEvent, ConnectEvent, ErrorEvent, ReadEvent, Server, TimeoutEvent, entrypoint

logger = logging.getLogger("tcpserve.echo")


def echo(server: Server) -> None:
    @server.on("connect")
    def connect(event: ConnectEvent) -> None:
        logger.info(f"{event.id} connected")

    @server.on("read")
    def read(event: ReadEvent) -> None:
        event.stream.write(event.data)

    @server.on("error")
    def error(event: ErrorEvent) -> None:
        logger.warning(f"{event.id} error: {event.message}")

    @server.on("timeout")
    def timeout(event: TimeoutEvent) -> None:
        logger.info(f"{event.id} timed out")

    @server.on("close")
    def close(event: CloseEvent) -> None:
        logger.info(f"{event.id} closed")


def main() -> None:
    entrypoint(echo)


if __name__ == '__main__':
    main()
