import socket
from dataclasses import dataclass
from enum import Enum
from typing import NotRequired, Self, TypedDict
from urllib.parse import urlencode

DEFAULT_BACKLOG = socket.SOMAXCONN


class Scheme(Enum):
    PLAIN   = "tcp"
    SECURE  = "tcps"


class ListenerOptions(TypedDict):
    """
    Flat option mapping handed to the engine when registering an acceptor.
    TLS keys are only present when the matching value is set.
    """

    port: int
    backlog: int
    reuse: bool
    tls: bool
    address: NotRequired[str]
    tls_ca: NotRequired[str]
    tls_cert: NotRequired[str]
    tls_key: NotRequired[str]
    tls_ciphers: NotRequired[str]
    tls_verify: NotRequired[int]


TLS_FIELDS = ("ca", "cert", "key", "ciphers", "verify")


@dataclass(frozen=True, slots=True)
class TLSOptions:
    ca: str | None = None
    cert: str | None = None
    key: str | None = None
    ciphers: str | None = None
    verify: int | None = None


@dataclass(frozen=True, slots=True)
class ListenerSpec:
    """
    Concrete configuration of one listening socket.

    ``address`` is None for a wildcard bind. ``tls`` is set if and only if the
    scheme is secure.
    """

    scheme: Scheme
    port: int
    address: str | None = None
    backlog: int = DEFAULT_BACKLOG
    reuse: bool = False
    tls: TLSOptions | None = None

    def __post_init__(self) -> None:
        if (self.tls is not None) != (self.scheme is Scheme.SECURE):
            raise ValueError(f"TLS options must be set iff scheme is '{Scheme.SECURE.value}'")

    @property
    def secure(self) -> bool:
        return self.scheme is Scheme.SECURE

    def to_options(self) -> ListenerOptions:
        options: ListenerOptions = {
            "port": self.port,
            "backlog": self.backlog,
            "reuse": self.reuse,
            "tls": self.secure,
        }
        if self.address is not None:
            options["address"] = self.address

        if self.tls is not None:
            for name in TLS_FIELDS:
                value = getattr(self.tls, name)
                if value is not None:
                    options[f"tls_{name}"] = value  # type: ignore[literal-required]

        return options

    @classmethod
    def from_options(cls, options: ListenerOptions) -> Self:
        tls = None
        if options["tls"]:
            tls = TLSOptions(**{
                name: options.get(f"tls_{name}") for name in TLS_FIELDS
            })

        return cls(
            scheme=Scheme.SECURE if options["tls"] else Scheme.PLAIN,
            port=options["port"],
            address=options.get("address"),
            backlog=options["backlog"],
            reuse=options["reuse"],
            tls=tls,
        )

    def to_url(self) -> str:
        host = self.address or "*"
        if ":" in host:
            host = f"[{host}]"

        query: list[tuple[str, str]] = []
        if self.reuse:
            query.append(("reuse", "1"))
        if self.tls is not None:
            for name in TLS_FIELDS:
                value = getattr(self.tls, name)
                if value is None:
                    continue
                query.append((name, f"{value:x}" if name == "verify" else value))

        url = f"{self.scheme.value}://{host}:{self.port}"
        if query:
            url += "?" + urlencode(query)
        return url
