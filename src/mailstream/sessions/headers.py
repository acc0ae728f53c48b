from __future__ import annotations

from email.header import decode_header
from email.utils import decode_rfc2231
from urllib.parse import unquote


def to_text(value: bytes | str | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def decode_header_value(value: bytes | str | None) -> str:
    """Decode RFC 2047 encoded words into a single string."""
    text = to_text(value)
    if not text:
        return ""
    parts: list[str] = []
    for chunk, encoding in decode_header(text):
        if isinstance(chunk, bytes):
            try:
                parts.append(chunk.decode(encoding or "utf-8", errors="replace"))
            except LookupError:
                parts.append(chunk.decode("utf-8", errors="replace"))
        else:
            parts.append(chunk)
    return "".join(parts)


def _decode_extended(value: str) -> str:
    charset, _language, text = decode_rfc2231(value)
    if charset is None:
        return unquote(text)
    try:
        return unquote(text, encoding=charset, errors="replace")
    except LookupError:
        return unquote(text)


def decode_parameters(pairs: dict[str, str]) -> dict[str, str]:
    """Normalise MIME parameters: ``name*`` (RFC 2231) and encoded words."""
    result: dict[str, str] = {}
    for key, value in pairs.items():
        if key.endswith("*"):
            result[key[:-1]] = _decode_extended(value)
        else:
            result[key] = decode_header_value(value)
    return result


def format_address(name: bytes | str | None, mailbox: bytes | str | None, host: bytes | str | None) -> str:
    address = to_text(mailbox)
    if mailbox and host:
        address = f"{address}@{to_text(host)}"
    elif host:
        address = to_text(host)

    display_name = decode_header_value(name).strip()
    if display_name and address:
        return f"{display_name} <{address}>"
    return display_name or address
