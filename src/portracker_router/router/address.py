"""Router address parsing.

Users enter router addresses in many shapes: ``192.168.1.1``,
``router.lan:2222``, ``http://192.168.1.1:8080/cgi-bin/luci/rpc``. The SSH
transport needs a ``(host, port)`` pair; the RPC transport needs an HTTP base
URL plus the LuCI RPC path. Both are derived from the same string here.
"""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import SplitResult, urlsplit

from portracker_router.errors import InvalidAddressError

DEFAULT_SSH_PORT = 22
DEFAULT_RPC_PATH = "/cgi-bin/luci/rpc"


@dataclass(frozen=True)
class RouterAddress:
    host: str
    port: int


@dataclass(frozen=True)
class RouterEndpoint:
    """HTTP location of the LuCI RPC endpoint."""

    base_url: str
    rpc_path: str


def _split(address: str) -> SplitResult:
    text = (address or "").strip()
    if not text:
        raise InvalidAddressError("Router address is empty")
    # urlsplit only recognises the netloc after "//"
    if "://" not in text:
        text = f"//{text}"
    try:
        parts = urlsplit(text)
    except ValueError as exc:
        raise InvalidAddressError(f"Invalid router address: {address}") from exc
    if not parts.hostname:
        raise InvalidAddressError(f"Invalid router address: {address}")
    return parts


def _port_of(parts: SplitResult, address: str) -> int | None:
    try:
        port = parts.port
    except ValueError as exc:
        raise InvalidAddressError(f"Invalid port in router address: {address}") from exc
    # urlsplit accepts port 0
    if port is not None and not 1 <= port <= 65535:
        raise InvalidAddressError(f"Invalid port in router address: {address}")
    return port


def parse_address(address: str, default_port: int = DEFAULT_SSH_PORT) -> RouterAddress:
    """Parse *address* into a host and port.

    The scheme and path, if any, are ignored. *default_port* applies when the
    address carries no explicit port.

    >>> parse_address("192.168.1.1")
    RouterAddress(host='192.168.1.1', port=22)
    >>> parse_address("http://r.local:8080/x")
    RouterAddress(host='r.local', port=8080)
    """
    parts = _split(address)
    port = _port_of(parts, address)
    return RouterAddress(host=parts.hostname, port=default_port if port is None else port)


def parse_router_url(
    address: str,
    default_path: str = DEFAULT_RPC_PATH,
    scheme: str = "http",
) -> RouterEndpoint:
    """Derive the LuCI RPC base URL and path from *address*.

    *scheme* is used when the address has none. An address without a path
    (or with a bare ``/``) gets *default_path*.
    """
    parts = _split(address)
    port = _port_of(parts, address)

    host = parts.hostname
    if ":" in host:
        host = f"[{host}]"
    netloc = host if port is None else f"{host}:{port}"

    path = parts.path.rstrip("/")
    return RouterEndpoint(
        base_url=f"{parts.scheme or scheme}://{netloc}",
        rpc_path=path or default_path,
    )
