from __future__ import annotations

import logging
import threading

from mailstream.errors import ConnectionFailure, ContentUnavailable, InvalidConfiguration, ProtocolError
from mailstream.mail.message import MailMessage
from mailstream.mail.mime import MimeInterpreter
from mailstream.mail.ports import PROTOCOL_SUFFIXES, PROTOCOLS
from mailstream.sessions import MailSession, SessionFactory, SessionTarget, open_session

logger = logging.getLogger(__name__)

# two connect attempts in total with keep-alive
KEEP_ALIVE_RETRIES = 1


class MailConnection:
    """A single mailbox session with keep-alive reconnects.

    Every server-touching call goes through one re-entrant lock, so a
    connection can be shared between threads but never runs two protocol
    commands at once. Server failures are reported as ``False`` or empty
    results; only bad constructor input raises.
    """

    def __init__(
        self,
        hostname: str,
        port: int,
        protocol: str,
        mailbox: str,
        username: str,
        password: str,
        keep_alive: bool = True,
        *,
        session_factory: SessionFactory = open_session,
        retry_delay: float = 0.0,
        timeout: float | None = None,
    ):
        self._validate(hostname, port, protocol, mailbox, username, password, keep_alive)

        self.hostname = hostname
        self.port = port
        self.protocol = protocol.lower()
        self.mailbox = mailbox
        self.username = username
        self._password = password
        self.keep_alive = keep_alive
        self.retry_delay = retry_delay
        self.timeout = timeout

        self._session_factory = session_factory
        self._session: MailSession | None = None
        self._lock = threading.RLock()
        self._generation = 0

        self.connect()

    @staticmethod
    def _validate(
        hostname: object,
        port: object,
        protocol: object,
        mailbox: object,
        username: object,
        password: object,
        keep_alive: object,
    ) -> None:
        if not (
            isinstance(hostname, str)
            and isinstance(port, int)
            and not isinstance(port, bool)
            and isinstance(protocol, str)
            and isinstance(mailbox, str)
            and isinstance(username, str)
            and isinstance(password, str)
            and isinstance(keep_alive, bool)
        ):
            raise InvalidConfiguration("One or more arguments are of an invalid data type.")

        if not hostname or port < 1 or protocol.lower() not in PROTOCOLS or not username or not mailbox:
            raise InvalidConfiguration(
                "One or more arguments have invalid contents.",
                details={"hostname": hostname, "port": port, "protocol": protocol, "mailbox": mailbox},
            )

    def __repr__(self) -> str:
        state = "open" if self._session is not None else "closed"
        return f"MailConnection({self.target!s}, user={self.username!r}, {state})"

    def __enter__(self) -> MailConnection:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        self.close()

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def state(self) -> str:
        return "open" if self._session is not None else "closed"

    @property
    def target(self) -> SessionTarget:
        suffix = PROTOCOL_SUFFIXES.get(self.protocol)
        if suffix is None:
            raise ProtocolError("Invalid protocol type", details={"protocol": self.protocol})
        return SessionTarget(hostname=self.hostname, port=self.port, suffix=suffix, mailbox=self.mailbox)

    def connect(self) -> bool:
        with self._lock:
            if self.is_connected():
                return True

            target = self.target
            retries = KEEP_ALIVE_RETRIES if self.keep_alive else 0
            try:
                session = self._session_factory(
                    target,
                    self.username,
                    self._password,
                    retries=retries,
                    retry_delay=self.retry_delay,
                    timeout=self.timeout,
                )
            except ConnectionFailure as exc:
                logger.warning("Mail connection to %s failed: %s", target, exc)
                self._session = None
                return False

            self._session = session
            self._generation += 1
            logger.info("Mail connection to %s opened as %s", target, self.username)
            return True

    def is_connected(self) -> bool:
        with self._lock:
            if self._session is None:
                return False
            if self._session.ping():
                return True

            logger.warning("Mail connection to %s dropped", self.target)
            self._session.abandon()
            self._session = None
            return False

    def keep_connected(self) -> bool:
        with self._lock:
            if self.is_connected():
                return True
            if not self.keep_alive:
                return False
            return self.connect()

    def close(self, expunge: bool = True) -> bool:
        with self._lock:
            session, self._session = self._session, None
            if session is None:
                return True
            try:
                session.close(expunge=expunge)
            except ConnectionFailure as exc:
                logger.warning("Mail connection to %s closed with error: %s", self.target, exc)
                session.abandon()
                return False
            logger.info("Mail connection to %s closed", self.target)
            return True

    def message(self, message_number: int, read_now: bool = False) -> MailMessage:
        return MailMessage.from_message_number(self, message_number, read_now)

    def search(self, query: str = "ALL", pull_data: bool = False) -> list[MailMessage]:
        """Return the messages matching ``query``, newest (highest number) first.

        An unavailable connection yields ``[]``; call :meth:`is_connected` to
        tell that apart from an empty result. Messages that fail to load when
        ``pull_data`` is set are left out.
        """
        with self._lock:
            if not self.keep_connected():
                return []

            try:
                numbers = self._session.search(query)
            except ConnectionFailure as exc:
                logger.warning("Search %r on %s failed: %s", query, self.target, exc)
                return []

            messages: list[MailMessage] = []
            for number in sorted(numbers, reverse=True):
                try:
                    messages.append(MailMessage.from_message_number(self, number, pull_data))
                except ContentUnavailable as exc:
                    logger.debug("Skipping message %s: %s", number, exc)
            return messages

    def delete_email(self, message: MailMessage, expunge: bool = False) -> bool:
        with self._lock:
            if not self.keep_connected():
                return False
            try:
                self._session.delete(message.message_number)
                if expunge:
                    self._session.expunge()
            except ConnectionFailure as exc:
                logger.warning("Delete of message %s failed: %s", message.message_number, exc)
                return False
            return True

    def read_message_contents(self, message: MailMessage) -> bool:
        with self._lock:
            if not self.keep_connected():
                return False
            if message.connection is not self or message.generation != self._generation:
                logger.warning(
                    "Message %s belongs to a previous session; sequence number may be stale",
                    message.message_number,
                )
                return False

            number = message.message_number
            try:
                overview = self._session.fetch_overview(number)
                if overview is None:
                    logger.info("Message %s not found on %s", number, self.target)
                    return False

                structure = self._session.fetch_structure(number)
                if structure is None:
                    logger.info("Message %s has no structure on %s", number, self.target)
                    return False

                interpreter = MimeInterpreter(self._session, number)
                body = interpreter.read(structure)
            except ConnectionFailure as exc:
                logger.warning("Reading message %s failed: %s", number, exc)
                return False

            # nothing reaches the message until the whole read succeeded
            message.set_seen(overview.seen)
            message.set_draft(overview.draft)
            message.set_subject(overview.subject)
            message.set_from(overview.from_)
            message.set_to(overview.to)
            message.set_date(overview.date)
            message.set_body(body)
            message.set_attachments(interpreter.attachments)
            return True
