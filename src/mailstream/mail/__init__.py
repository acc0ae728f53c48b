from .attachment import MailAttachment
from .connection import MailConnection
from .message import MailMessage
from .ports import DEFAULT_PORTS, get_default_port

__all__ = ["DEFAULT_PORTS", "MailAttachment", "MailConnection", "MailMessage", "get_default_port"]
