import ssl

from tcpserve.core.exception import EngineError
from tcpserve.core.model.listener import ListenerOptions

VERIFY_NONE = 0x00
VERIFY_PEER = 0x01
VERIFY_FAIL_IF_NO_PEER_CERT = 0x02


def verify_mode(verify: int | None, has_ca: bool) -> ssl.VerifyMode:
    """
    Map the OpenSSL-style ``verify`` bitmask of a listen string to an
    ``ssl.VerifyMode``. Without an explicit mask, peers are verified only when
    a CA is configured.
    """
    if verify is None:
        verify = VERIFY_PEER | VERIFY_FAIL_IF_NO_PEER_CERT if has_ca else VERIFY_NONE

    if not verify & VERIFY_PEER:
        return ssl.CERT_NONE
    if verify & VERIFY_FAIL_IF_NO_PEER_CERT:
        return ssl.CERT_REQUIRED
    return ssl.CERT_OPTIONAL


def get_server_ssl_ctx(options: ListenerOptions) -> ssl.SSLContext:
    certfile = options.get("tls_cert")
    keyfile = options.get("tls_key")
    cafile = options.get("tls_ca")

    if not certfile or not keyfile:
        raise EngineError("TLS listener requires both 'cert' and 'key'")

    ctx = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
    try:
        ctx.load_cert_chain(certfile=certfile, keyfile=keyfile)
        if cafile:
            ctx.load_verify_locations(cafile=cafile)
        if ciphers := options.get("tls_ciphers"):
            ctx.set_ciphers(ciphers)
    except (OSError, ssl.SSLError) as ex:
        raise EngineError(f"Cannot load TLS material: {ex}") from ex

    ctx.verify_mode = verify_mode(options.get("tls_verify"), bool(cafile))

    return ctx
