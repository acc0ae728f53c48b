from .factory import MailSession, SessionFactory, open_session
from .models import BodyPart, MessageOverview, SessionTarget

__all__ = [
    "BodyPart",
    "MailSession",
    "MessageOverview",
    "SessionFactory",
    "SessionTarget",
    "open_session",
]
