"""Best-effort originating client address for logs.

Every header consulted here is client controlled and trivially spoofed.
The result is for diagnostics only and must never gate access.
"""

from typing import Mapping


def split_host_port(address: str) -> str:
    """Return the host part of ``host:port`` or ``[v6]:port``.

    Raises ValueError when ``address`` has no port.
    """
    if address.startswith("["):
        end = address.find("]")
        if end == -1 or address[end + 1 : end + 2] != ":":
            raise ValueError(f"missing port in address {address!r}")
        return address[1:end]
    host, sep, port = address.rpartition(":")
    if not sep or not port or ":" in host:
        raise ValueError(f"missing port in address {address!r}")
    return host


def format_address(address) -> str:
    """Render a socket address tuple as ``host:port``."""
    host, port = address[0], address[1]
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def resolve_client_ip(headers: Mapping[str, str], remote_addr: str) -> str:
    """Pick the client address from proxy headers, then the peer address.

    ``headers`` must use lowercase keys.
    """
    cdn_ip = headers.get("cf-connecting-ip", "").strip()
    if cdn_ip:
        return cdn_ip

    forwarded_for = headers.get("x-forwarded-for", "")
    if forwarded_for.strip():
        return forwarded_for.split(",")[0].strip()

    real_ip = headers.get("x-real-ip", "").strip()
    if real_ip:
        return real_ip

    try:
        return split_host_port(remote_addr)
    except ValueError:
        return remote_addr
