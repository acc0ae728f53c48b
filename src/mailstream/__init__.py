from .errors import ConnectionFailure, ContentUnavailable, InvalidConfiguration, MailStreamError, ProtocolError
from .mail import MailAttachment, MailConnection, MailMessage, get_default_port

__all__ = [
    "ConnectionFailure",
    "ContentUnavailable",
    "InvalidConfiguration",
    "MailAttachment",
    "MailConnection",
    "MailMessage",
    "MailStreamError",
    "ProtocolError",
    "get_default_port",
]
