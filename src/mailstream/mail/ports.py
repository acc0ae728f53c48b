from __future__ import annotations

from types import MappingProxyType

DEFAULT_PORTS = MappingProxyType(
    {
        "imap": 143,
        "pop3": 110,
        "imaps": 993,
        "pop3s": 995,
    }
)

PROTOCOLS = tuple(DEFAULT_PORTS)

# protocol token -> transport suffix of the connection target
PROTOCOL_SUFFIXES = MappingProxyType(
    {
        "imap": "imap",
        "pop3": "pop3",
        "imaps": "imap/ssl",
        "pop3s": "pop3/ssl",
    }
)


def get_default_port(value: str | int) -> int | str | None:
    """Look up the default port of a protocol, or the protocol of a port.

    A protocol token (case-insensitive) returns its port number, a port
    number returns the first protocol registered for it. Unknown input
    returns ``None``.
    """
    if isinstance(value, str):
        return DEFAULT_PORTS.get(value.lower())

    if isinstance(value, int) and not isinstance(value, bool):
        for protocol, port in DEFAULT_PORTS.items():
            if port == value:
                return protocol

    return None
