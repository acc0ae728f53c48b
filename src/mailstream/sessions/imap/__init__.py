from .session import ImapSession, convert_body_structure

__all__ = ["ImapSession", "convert_body_structure"]
