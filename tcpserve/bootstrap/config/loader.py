import argparse
import os
from collections.abc import Sequence
from functools import lru_cache
from pathlib import Path

DEFAULT_CONFIGFILE = "tcpserve.yaml"


def parse_cli_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="tcpserve",
        description=(
            "Start a generic TCP server.\n\n"
            "Every listen location becomes an acceptor; connection lifecycle "
            "events (connect, read, error, timeout, close) are published to "
            "the registered handlers."
        ),
        formatter_class=argparse.RawTextHelpFormatter
    )

    parser.add_argument(
        "-c", "--config",
        type=str,
        help="Path to a YAML configuration file"
    )

    parser.add_argument(
        "-L", "--listen",
        action="append",
        metavar="URL",
        help=(
            "Location to listen on, may be repeated.\n"
            "Overrides the 'listen' list of the configuration file.\n\n"
            "Examples:\n"
            "  --listen 'tcp://*:3000'\n"
            "  --listen 'tcp://127.0.0.1:9000?reuse=1'\n"
            "  --listen 'tcps://*:9443?cert=server.crt&key=server.key'"
        ),
    )

    parser.add_argument(
        "-l", "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help=(
            "Logging verbosity.\n"
            "DEBUG    → logs every accepted and closed connection.\n"
            "INFO     → start-up and shutdown (default).\n"
            "WARNING  → only warnings and errors.\n"
            "ERROR    → only errors, including failing event handlers.\n"
            "CRITICAL → only critical failures."
        ),
    )

    return parser.parse_args(argv)


@lru_cache
def get_cli_args() -> argparse.Namespace:
    return parse_cli_args()


def get_configfile(args: argparse.Namespace) -> Path | None:
    # Priority: CLI > ENV > default file in current working directory
    raw = args.config or os.getenv("TCPSERVE_CONFIG")

    if raw is None:
        file = Path.cwd() / DEFAULT_CONFIGFILE
        return file if file.is_file() else None

    file = Path(raw)
    if not file.is_file():
        raise SystemExit(
            f"[config] Configuration file not found: '{file}'.\n"
            "  - Use --config <file.yaml>\n"
            "  - Or set the TCPSERVE_CONFIG environment variable\n"
            f"  - Or place a '{DEFAULT_CONFIGFILE}' file in the current working directory."
        )

    return file
