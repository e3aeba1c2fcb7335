import logging
from typing import Callable

from pydantic import ValidationError

from tcpserve.bootstrap.config.loader import get_cli_args, get_configfile
from tcpserve.bootstrap.config.settings import TcpServeSettings
from tcpserve.core.exception import TcpServeError
from tcpserve.core.server import Server
from tcpserve.core.utils.log import setup_logging

logger = logging.getLogger("tcpserve.bootstrap")


def run(server: Server) -> None:
    try:
        server.run()
    except KeyboardInterrupt:
        server.stop()
    finally:
        close = getattr(server.engine, "close", None)
        if close is not None:
            close()


def build_server(settings: TcpServeSettings) -> Server:
    return Server(config=settings.to_config())


def entrypoint(setup: Callable[[Server], None] | None = None) -> None:
    """
    Console entry point: read CLI arguments and settings, let ``setup``
    register its handlers, then serve until SIGINT or SIGTERM.
    """
    args = get_cli_args()
    setup_logging(args.log_level)

    values = {}
    if args.listen:
        values["listen"] = args.listen

    try:
        settings = TcpServeSettings.load(get_configfile(args), **values)
        server = build_server(settings)
    except (ValidationError, TcpServeError) as ex:
        raise SystemExit(f"[config] {ex}") from ex

    if setup is not None:
        setup(server)

    try:
        run(server)
    except TcpServeError as ex:
        logger.critical(f"Server failed: {ex}")
        raise SystemExit(1) from ex
