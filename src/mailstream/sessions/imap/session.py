from __future__ import annotations

import contextlib
import logging
from email.utils import format_datetime
from typing import Any, Iterator

from imapclient import IMAPClient
from imapclient.exceptions import IMAPClientError

from mailstream.errors import ConnectionFailure
from mailstream.sessions.headers import decode_header_value, decode_parameters, format_address, to_text
from mailstream.sessions.models import BodyPart, MessageOverview, SessionTarget

logger = logging.getLogger(__name__)

SEEN_FLAG = b"\\Seen"
DRAFT_FLAG = b"\\Draft"


def _pairs(value: Any) -> dict[str, str]:
    if not isinstance(value, (tuple, list)) or not value:
        return {}
    items = list(value)
    raw = {to_text(key): to_text(val) for key, val in zip(items[0::2], items[1::2])}
    return decode_parameters(raw)


def _disposition_parameters(value: Any) -> dict[str, str]:
    # (b"attachment", (b"FILENAME", b"doc.txt")) or NIL
    if isinstance(value, (tuple, list)) and len(value) >= 2:
        return _pairs(value[1])
    return {}


def _split_multipart(node: Any) -> tuple[list[Any], tuple[Any, ...]]:
    if isinstance(node[0], list):
        return list(node[0]), tuple(node[1:])
    parts: list[Any] = []
    for index, item in enumerate(node):
        if not isinstance(item, (tuple, list)):
            return parts, tuple(node[index:])
        parts.append(item)
    return parts, ()


def _is_multipart(node: Any) -> bool:
    return isinstance(node[0], (tuple, list))


def convert_body_structure(node: Any) -> BodyPart:
    """Convert an imapclient ``BODYSTRUCTURE`` value into a :class:`BodyPart` tree.

    Children of an encapsulated ``message/rfc822`` part are the parts of the
    inner message, so their positions line up with IMAP section numbers.
    """
    if _is_multipart(node):
        parts, rest = _split_multipart(node)
        subtype = to_text(rest[0]).lower() if rest else "mixed"
        return BodyPart(
            type="multipart",
            subtype=subtype,
            parameters=_pairs(rest[1]) if len(rest) > 1 else {},
            disposition_parameters=_disposition_parameters(rest[2]) if len(rest) > 2 else {},
            parts=[convert_body_structure(part) for part in parts],
        )

    main_type = to_text(node[0]).lower()
    subtype = to_text(node[1]).lower()
    encoding = to_text(node[5]).lower() if len(node) > 5 and node[5] else "7bit"

    children: list[BodyPart] = []
    if main_type == "text":
        disposition_index = 9
    elif main_type == "message" and subtype == "rfc822" and len(node) > 8:
        disposition_index = 11
        nested = node[8]
        if isinstance(nested, (tuple, list)) and nested:
            inner = convert_body_structure(nested)
            children = inner.parts if inner.is_multipart else [inner]
    else:
        disposition_index = 8

    disposition = node[disposition_index] if len(node) > disposition_index else None
    return BodyPart(
        type=main_type,
        subtype=subtype,
        encoding=encoding,
        parameters=_pairs(node[2]),
        disposition_parameters=_disposition_parameters(disposition),
        parts=children,
    )


class ImapSession:
    def __init__(self, client: IMAPClient, target: SessionTarget):
        self.client = client
        self.target = target

    @classmethod
    def open(
        cls,
        target: SessionTarget,
        username: str,
        password: str,
        timeout: float | None = None,
    ) -> ImapSession:
        try:
            client = IMAPClient(
                target.hostname,
                port=target.port,
                ssl=target.ssl,
                use_uid=False,
                timeout=timeout,
            )
        except (IMAPClientError, OSError) as exc:
            raise ConnectionFailure(
                f"IMAP connect failed: {exc}", details={"target": str(target)}
            ) from exc

        try:
            client.login(username, password)
            client.select_folder(target.mailbox)
        except (IMAPClientError, OSError) as exc:
            with contextlib.suppress(OSError):
                client.shutdown()
            raise ConnectionFailure(
                f"IMAP login failed: {exc}",
                details={"target": str(target), "username": username},
            ) from exc

        return cls(client, target)

    @contextlib.contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        try:
            yield
        except (IMAPClientError, OSError) as exc:
            raise ConnectionFailure(
                f"IMAP {operation} failed: {exc}",
                details={"target": str(self.target), "operation": operation},
            ) from exc

    def ping(self) -> bool:
        try:
            self.client.noop()
        except (IMAPClientError, OSError) as exc:
            logger.info("IMAP ping failed for %s: %s", self.target, exc)
            return False
        return True

    def search(self, query: str) -> list[int]:
        # imapclient encodes criteria as us-ascii unless a charset is given
        charset = None if query.isascii() else "UTF-8"
        with self._guard("search"):
            return [int(number) for number in self.client.search(query, charset=charset)]

    @staticmethod
    def _format_addresses(addresses: Any) -> str | None:
        if not addresses:
            return None
        formatted = [
            format_address(address.name, address.mailbox, address.host)
            for address in addresses
        ]
        return ", ".join(item for item in formatted if item)

    def fetch_overview(self, number: int) -> MessageOverview | None:
        with self._guard("fetch overview"):
            response = self.client.fetch([number], ["ENVELOPE", "FLAGS"])
        data = response.get(number)
        if not data:
            return None

        flags = data.get(b"FLAGS") or ()
        overview = MessageOverview(seen=SEEN_FLAG in flags, draft=DRAFT_FLAG in flags)

        envelope = data.get(b"ENVELOPE")
        if envelope is not None:
            if envelope.subject is not None:
                overview.subject = decode_header_value(envelope.subject)
            overview.from_ = self._format_addresses(envelope.from_)
            overview.to = self._format_addresses(envelope.to)
            if envelope.date is not None:
                overview.date = format_datetime(envelope.date)
        return overview

    def fetch_structure(self, number: int) -> BodyPart | None:
        with self._guard("fetch structure"):
            response = self.client.fetch([number], ["BODYSTRUCTURE"])
        data = response.get(number)
        if not data or not data.get(b"BODYSTRUCTURE"):
            return None
        return convert_body_structure(data[b"BODYSTRUCTURE"])

    def _fetch_section(self, number: int, section: str) -> bytes:
        with self._guard(f"fetch BODY[{section}]"):
            response = self.client.fetch([number], [f"BODY.PEEK[{section}]"])
        data = response.get(number) or {}
        expected = f"BODY[{section}]".encode()
        if expected in data:
            return data[expected] or b""
        for key, value in data.items():
            if isinstance(key, bytes) and key.upper().startswith(b"BODY["):
                return value or b""
        return b""

    def fetch_body(self, number: int) -> bytes:
        return self._fetch_section(number, "TEXT")

    def fetch_part(self, number: int, section: str) -> bytes:
        return self._fetch_section(number, section)

    def delete(self, number: int) -> None:
        with self._guard("delete"):
            self.client.delete_messages([number])

    def expunge(self) -> None:
        with self._guard("expunge"):
            self.client.expunge()

    def close(self, expunge: bool = True) -> None:
        with self._guard("close"):
            try:
                if expunge:
                    # CLOSE removes \Deleted messages from the selected mailbox
                    self.client.close_folder()
            finally:
                self.client.logout()

    def abandon(self) -> None:
        try:
            self.client.shutdown()
        except OSError as exc:
            logger.debug("IMAP socket shutdown for %s failed: %s", self.target, exc)
