from __future__ import annotations

from typing import Any


class MailStreamError(Exception):
    """Base error for mailstream.

    ``transient`` separates faults that may clear up on retry (network,
    missing content) from faults that need changed input (configuration,
    protocol).
    """

    transient = False
    default_message = "Mail error"

    def __init__(self, message: str | None = None, details: dict[str, Any] | None = None):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "transient": self.transient,
            "message": self.message,
            "details": self.details,
        }


class InvalidConfiguration(MailStreamError, ValueError):
    default_message = "Invalid mail connection parameters"


class ProtocolError(MailStreamError):
    default_message = "Unsupported mail protocol"


class ConnectionFailure(MailStreamError):
    transient = True
    default_message = "Mail server connection failed"


class ContentUnavailable(MailStreamError):
    transient = True
    default_message = "Unable to read message contents"
