"""Parsing of the manual ``--httpproxy`` setting."""

from .exceptions import ProxyFormatError
from .models import ProxySettings


def parse_proxy(proxy: str) -> ProxySettings:
    """Split a proxy string of the form ``http://host:port``.

    Args:
        proxy: Proxy string from the command line

    Returns:
        Host and port of the proxy

    Raises:
        ProxyFormatError: If the string does not have exactly three
            colon separated parts or the port is not a number

    Examples:
        >>> parse_proxy("http://192.168.1.1:8080")
        ProxySettings(host='192.168.1.1', port=8080)
    """
    parts = proxy.split(":")
    if len(parts) != 3:
        raise ProxyFormatError(proxy)

    # http: //192.168.178.23 : 8080
    host = parts[1]
    if host.startswith("//"):
        host = host[2:]
    if not host:
        raise ProxyFormatError(proxy)

    try:
        port = int(parts[2])
    except ValueError as e:
        raise ProxyFormatError(proxy) from e

    return ProxySettings(host=host, port=port)
