from urllib.parse import parse_qsl, urlsplit

from tcpserve.core.exception import MalformedListenSpec
from tcpserve.core.model.listener import DEFAULT_BACKLOG, ListenerSpec, Scheme, TLSOptions, TLS_FIELDS

WILDCARD_HOSTS = ("*", "")

_REUSE_VALUES = {"1": True, "0": False, "": False}


def parse_listen(spec: str, backlog: int = DEFAULT_BACKLOG) -> ListenerSpec:
    """
    Parse a listen string of the form ``scheme://[host]:port[?params]``.

    ``tcps`` enables TLS and is the only scheme accepting the ``ca``, ``cert``,
    ``key``, ``ciphers`` and ``verify`` parameters. ``verify`` is a hexadecimal
    bitmask. Unknown parameters are ignored; the last occurrence of a repeated
    parameter wins.
    """
    try:
        url = urlsplit(spec)
        port = url.port
    except ValueError as ex:
        raise MalformedListenSpec(spec, str(ex)) from ex

    try:
        scheme = Scheme(url.scheme)
    except ValueError:
        raise MalformedListenSpec(spec, f"unrecognized scheme '{url.scheme}'") from None

    if not url.netloc:
        raise MalformedListenSpec(spec, "missing host and port")
    if port is None:
        raise MalformedListenSpec(spec, "missing port")
    if url.path or url.fragment:
        raise MalformedListenSpec(spec, "unexpected path or fragment")
    if "@" in url.netloc:
        raise MalformedListenSpec(spec, "unexpected user information")

    address = url.hostname
    if address in WILDCARD_HOSTS:
        address = None

    params = dict(parse_qsl(url.query, keep_blank_values=True))

    reuse = params.get("reuse", "0")
    if reuse not in _REUSE_VALUES:
        raise MalformedListenSpec(spec, f"reuse must be 0 or 1, got '{reuse}'")

    tls_params = {name: params[name] for name in TLS_FIELDS if name in params}
    tls = None
    if scheme is Scheme.SECURE:
        tls = TLSOptions(
            ca=tls_params.get("ca"),
            cert=tls_params.get("cert"),
            key=tls_params.get("key"),
            ciphers=tls_params.get("ciphers"),
            verify=_parse_verify(spec, tls_params.get("verify")),
        )
    elif tls_params:
        names = ", ".join(sorted(tls_params))
        raise MalformedListenSpec(spec, f"TLS parameters ({names}) require the '{Scheme.SECURE.value}' scheme")

    return ListenerSpec(
        scheme=scheme,
        port=port,
        address=address,
        backlog=backlog,
        reuse=_REUSE_VALUES[reuse],
        tls=tls,
    )


def _parse_verify(spec: str, value: str | None) -> int | None:
    if value is None:
        return None

    try:
        verify = int(value, 16)
    except ValueError:
        raise MalformedListenSpec(spec, f"verify must be hexadecimal, got '{value}'") from None

    if verify < 0:
        raise MalformedListenSpec(spec, f"verify must not be negative, got '{value}'")
    return verify
