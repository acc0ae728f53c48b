from __future__ import annotations

import contextlib
import email
import logging
import poplib
import shlex
from email.message import Message
from email.parser import BytesHeaderParser
from email.utils import collapse_rfc2231_value
from typing import Iterator

from mailstream.errors import ConnectionFailure
from mailstream.sessions.headers import decode_header_value
from mailstream.sessions.models import BodyPart, MessageOverview, SessionTarget

logger = logging.getLogger(__name__)

HEADER_CRITERIA = {"SUBJECT": "Subject", "FROM": "From", "TO": "To"}


def _message_parameters(message: Message, header: str) -> dict[str, str]:
    params = message.get_params(header=header) or []
    result: dict[str, str] = {}
    # first entry is the value itself (e.g. "text/plain" or "attachment")
    for key, value in params[1:]:
        if isinstance(value, tuple):
            result[key] = collapse_rfc2231_value(value)
        else:
            result[key] = decode_header_value(value)
    return result


def _children(message: Message) -> list[Message]:
    if message.get_content_maintype() == "message" and message.is_multipart():
        inner = message.get_payload(0)
        if inner.is_multipart() and inner.get_content_maintype() == "multipart":
            return list(inner.get_payload())
        return [inner]
    if message.is_multipart():
        return list(message.get_payload())
    return []


def build_structure(message: Message) -> BodyPart:
    """Describe a parsed message the way an IMAP server reports ``BODYSTRUCTURE``."""
    encoding = (message.get("Content-Transfer-Encoding") or "7bit").strip().lower()
    return BodyPart(
        type=message.get_content_maintype(),
        subtype=message.get_content_subtype(),
        encoding=encoding,
        parameters=_message_parameters(message, "content-type"),
        disposition_parameters=_message_parameters(message, "content-disposition"),
        parts=[build_structure(child) for child in _children(message)],
    )


def locate_part(message: Message, section: str) -> Message:
    node = message
    for index in section.split("."):
        children = _children(node)
        position = int(index) - 1
        if position < 0 or position >= len(children):
            raise KeyError(f"No MIME part {section}")
        node = children[position]
    return node


def raw_part_bytes(part: Message) -> bytes:
    """Return the still-encoded content of ``part`` (IMAP ``BODY[section]``)."""
    if part.get_content_maintype() == "message" and part.is_multipart():
        return part.get_payload(0).as_bytes()
    if part.is_multipart():
        return part.as_bytes().partition(b"\n\n")[2]
    payload = part.get_payload()
    if isinstance(payload, bytes):
        return payload
    return str(payload).encode("utf-8", errors="surrogateescape")


def _parse_criteria(query: str) -> list[tuple[str, str]] | None:
    try:
        tokens = shlex.split(query)
    except ValueError:
        return None
    criteria: list[tuple[str, str]] = []
    position = 0
    while position < len(tokens):
        keyword = tokens[position].upper()
        if keyword == "ALL":
            position += 1
            continue
        if keyword in HEADER_CRITERIA and position + 1 < len(tokens):
            criteria.append((HEADER_CRITERIA[keyword], tokens[position + 1].lower()))
            position += 2
            continue
        return None
    return criteria


class Pop3Session:
    def __init__(
        self,
        client: poplib.POP3,
        target: SessionTarget,
        username: str = "",
        password: str = "",
        timeout: float | None = None,
    ):
        self.client = client
        self.target = target
        self._username = username
        self._password = password
        self._timeout = timeout
        self._raw: dict[int, bytes] = {}
        self._parsed: dict[int, Message] = {}
        self._deleted: set[int] = set()

    @classmethod
    def open(
        cls,
        target: SessionTarget,
        username: str,
        password: str,
        timeout: float | None = None,
    ) -> Pop3Session:
        if target.mailbox.upper() != "INBOX":
            raise ConnectionFailure(
                "POP3 servers only provide the INBOX mailbox",
                details={"target": str(target)},
            )

        client = cls._login(target, username, password, timeout)
        return cls(client, target, username, password, timeout)

    @staticmethod
    def _login(target: SessionTarget, username: str, password: str, timeout: float | None) -> poplib.POP3:
        client_cls = poplib.POP3_SSL if target.ssl else poplib.POP3
        kwargs = {"timeout": timeout} if timeout is not None else {}
        try:
            client = client_cls(target.hostname, target.port, **kwargs)
        except (poplib.error_proto, OSError) as exc:
            raise ConnectionFailure(
                f"POP3 connect failed: {exc}", details={"target": str(target)}
            ) from exc

        try:
            client.user(username)
            client.pass_(password)
        except (poplib.error_proto, OSError) as exc:
            with contextlib.suppress(OSError):
                client.close()
            raise ConnectionFailure(
                f"POP3 login failed: {exc}",
                details={"target": str(target), "username": username},
            ) from exc
        return client

    @contextlib.contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        try:
            yield
        except (poplib.error_proto, OSError) as exc:
            raise ConnectionFailure(
                f"POP3 {operation} failed: {exc}",
                details={"target": str(self.target), "operation": operation},
            ) from exc

    def ping(self) -> bool:
        try:
            self.client.noop()
        except (poplib.error_proto, OSError) as exc:
            logger.info("POP3 ping failed for %s: %s", self.target, exc)
            return False
        return True

    def _headers(self, number: int) -> Message:
        with self._guard("top"):
            _response, lines, _octets = self.client.top(number, 0)
        return BytesHeaderParser().parsebytes(b"\r\n".join(lines))

    def search(self, query: str) -> list[int]:
        criteria = _parse_criteria(query)
        if criteria is None:
            logger.warning("POP3 search supports ALL, SUBJECT, FROM and TO only: %r", query)
            return []

        with self._guard("stat"):
            count, _size = self.client.stat()
        numbers = [number for number in range(1, count + 1) if number not in self._deleted]
        if not criteria:
            return numbers

        matches: list[int] = []
        for number in numbers:
            headers = self._headers(number)
            if all(needle in decode_header_value(headers.get(name)).lower() for name, needle in criteria):
                matches.append(number)
        return matches

    def _retrieve(self, number: int) -> bytes:
        if number not in self._raw:
            with self._guard("retr"):
                _response, lines, _octets = self.client.retr(number)
            self._raw[number] = b"\r\n".join(lines) + b"\r\n"
        return self._raw[number]

    def _message(self, number: int) -> Message:
        if number not in self._parsed:
            self._parsed[number] = email.message_from_bytes(self._retrieve(number))
        return self._parsed[number]

    def fetch_overview(self, number: int) -> MessageOverview | None:
        if number in self._deleted:
            return None
        try:
            headers = self._headers(number)
        except ConnectionFailure as exc:
            if isinstance(exc.__cause__, poplib.error_proto):
                return None
            raise

        overview = MessageOverview()
        if headers.get("Subject") is not None:
            overview.subject = decode_header_value(headers["Subject"])
        if headers.get("From") is not None:
            overview.from_ = decode_header_value(headers["From"])
        if headers.get("To") is not None:
            overview.to = decode_header_value(headers["To"])
        if headers.get("Date") is not None:
            overview.date = str(headers["Date"]).strip()
        return overview

    def fetch_structure(self, number: int) -> BodyPart | None:
        if number in self._deleted:
            return None
        return build_structure(self._message(number))

    def fetch_body(self, number: int) -> bytes:
        raw = self._retrieve(number)
        return raw.partition(b"\r\n\r\n")[2]

    def fetch_part(self, number: int, section: str) -> bytes:
        try:
            part = locate_part(self._message(number), section)
        except (KeyError, ValueError) as exc:
            raise ConnectionFailure(
                f"POP3 message {number} has no part {section}",
                details={"target": str(self.target), "section": section},
            ) from exc
        return raw_part_bytes(part)

    def delete(self, number: int) -> None:
        with self._guard("dele"):
            self.client.dele(number)
        self._deleted.add(number)
        self._raw.pop(number, None)
        self._parsed.pop(number, None)

    def expunge(self) -> None:
        """Commit pending deletions: POP3 only applies DELE on QUIT, so log out and back in."""
        if not self._deleted:
            return
        with self._guard("quit"):
            self.client.quit()
        self._deleted.clear()
        self._raw.clear()
        self._parsed.clear()
        self.client = self._login(self.target, self._username, self._password, self._timeout)
        logger.info("POP3 deletions committed on %s", self.target)

    def close(self, expunge: bool = True) -> None:
        with self._guard("quit"):
            if not expunge and self._deleted:
                self.client.rset()
            self.client.quit()

    def abandon(self) -> None:
        try:
            self.client.close()
        except OSError as exc:
            logger.debug("POP3 socket close for %s failed: %s", self.target, exc)
