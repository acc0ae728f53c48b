from __future__ import annotations

import logging
import time
from typing import Protocol

from mailstream.errors import ConnectionFailure, ProtocolError
from mailstream.sessions.imap import ImapSession
from mailstream.sessions.models import BodyPart, MessageOverview, SessionTarget
from mailstream.sessions.pop3 import Pop3Session

logger = logging.getLogger(__name__)


class MailSession(Protocol):
    def ping(self) -> bool: ...

    def search(self, query: str) -> list[int]: ...

    def fetch_overview(self, number: int) -> MessageOverview | None: ...

    def fetch_structure(self, number: int) -> BodyPart | None: ...

    def fetch_body(self, number: int) -> bytes: ...

    def fetch_part(self, number: int, section: str) -> bytes: ...

    def delete(self, number: int) -> None: ...

    def expunge(self) -> None: ...

    def close(self, expunge: bool = True) -> None: ...

    def abandon(self) -> None: ...


class SessionFactory(Protocol):
    def __call__(
        self,
        target: SessionTarget,
        username: str,
        password: str,
        *,
        retries: int,
        retry_delay: float = 0.0,
        timeout: float | None = None,
    ) -> MailSession: ...


SESSION_CLASSES = {
    "imap": ImapSession,
    "pop3": Pop3Session,
}


def open_session(
    target: SessionTarget,
    username: str,
    password: str,
    *,
    retries: int,
    retry_delay: float = 0.0,
    timeout: float | None = None,
) -> MailSession:
    """Open a mail session, trying ``1 + retries`` times before giving up.

    Raises :class:`ConnectionFailure` with the last error once the budget is
    spent.
    """
    session_cls = SESSION_CLASSES.get(target.protocol)
    if session_cls is None:
        raise ProtocolError(f"No session type for {target.suffix}", details={"target": str(target)})

    attempts = max(retries, 0) + 1
    last_error: ConnectionFailure | None = None
    for attempt in range(1, attempts + 1):
        try:
            return session_cls.open(target, username, password, timeout=timeout)
        except ConnectionFailure as exc:
            last_error = exc
            logger.warning("Connect attempt %s/%s to %s failed: %s", attempt, attempts, target, exc)
            if attempt < attempts and retry_delay > 0:
                time.sleep(retry_delay)

    assert last_error is not None
    raise last_error
