from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping

from mailstream.config import MailProfile
from mailstream.errors import MailStreamError
from mailstream.mail.connection import MailConnection

logger = logging.getLogger(__name__)

ConnectionFactory = Callable[..., MailConnection]


class ConnectionRegistry:
    """Named, cached connections built from configured profiles."""

    def __init__(
        self,
        profiles: Mapping[str, MailProfile],
        *,
        keep_alive: bool = True,
        retry_delay: float = 0.0,
        timeout: float | None = None,
        connection_factory: ConnectionFactory = MailConnection,
    ):
        self._profiles = {name.lower(): profile for name, profile in profiles.items()}
        self.keep_alive = keep_alive
        self.retry_delay = retry_delay
        self.timeout = timeout
        self._connection_factory = connection_factory
        self._connections: dict[str, MailConnection] = {}
        self._lock = threading.Lock()

    def names(self) -> list[str]:
        return sorted(self._profiles)

    def profile(self, name: str) -> MailProfile | None:
        return self._profiles.get(name.lower())

    def get_connection(self, name: str) -> MailConnection | None:
        key = name.lower()
        with self._lock:
            profile = self._profiles.get(key)
            if profile is None:
                logger.warning("Unknown mail profile %r", name)
                return None

            cached = self._connections.get(key)
            if cached is not None:
                if cached.is_connected():
                    return cached
                logger.info("Dropping stale connection for profile %r", key)
                cached.close()
                del self._connections[key]

            try:
                connection = self._connection_factory(
                    profile.hostname,
                    profile.port,
                    profile.protocol,
                    profile.mailbox,
                    profile.username,
                    profile.password,
                    self.keep_alive,
                    retry_delay=self.retry_delay,
                    timeout=self.timeout,
                )
            except MailStreamError as exc:
                logger.warning("Mail profile %r could not be used: %s", key, exc)
                return None

            if not connection.is_connected():
                logger.warning("Mail profile %r is unreachable at %s", key, profile.address)
                return None

            self._connections[key] = connection
            return connection

    def close_all(self, expunge: bool = True) -> None:
        with self._lock:
            for key, connection in self._connections.items():
                if not connection.close(expunge=expunge):
                    logger.warning("Connection for profile %r did not close cleanly", key)
            self._connections.clear()
