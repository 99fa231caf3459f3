from __future__ import annotations


def parse_listen_address(address: str) -> tuple[str, int]:
    """Split a ``host:port`` listen address; an empty host means all interfaces."""
    host, sep, port_text = address.strip().rpartition(":")
    if not sep:
        host, port_text = "", address.strip()
    host = host.strip("[]")
    try:
        port = int(port_text)
    except ValueError as exc:
        raise ValueError(f"Invalid listen address: {address!r}") from exc
    if not 0 <= port <= 65535:
        raise ValueError(f"Invalid listen port in {address!r}")
    return host or "0.0.0.0", port
