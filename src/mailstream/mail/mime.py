"""Flatten a server-reported MIME structure into body text and attachments.

The walk is pre-order: a part is classified before its children, children
left to right. Attachments are collected on the interpreter in that order,
and every part's readable text is merged into the text returned to its
parent.
"""

from __future__ import annotations

import base64
import binascii
import logging
import quopri
from typing import TYPE_CHECKING

from mailstream.mail.attachment import MailAttachment
from mailstream.sessions.models import BodyPart

if TYPE_CHECKING:
    from mailstream.sessions.factory import MailSession

logger = logging.getLogger(__name__)

TEXT_SEPARATOR = "\n\n"
MARKUP_SEPARATOR = "<br /><br />"


def decode_transfer(data: bytes, encoding: str) -> bytes:
    encoding = (encoding or "").lower()
    if encoding == "quoted-printable":
        return quopri.decodestring(data)
    if encoding == "base64":
        try:
            return base64.b64decode(data)
        except (binascii.Error, ValueError) as exc:
            logger.warning("Malformed base64 part left undecoded: %s", exc)
            return data
    return data


def decode_text(data: bytes, charset: str | None) -> str:
    try:
        return data.decode(charset or "utf-8", errors="replace")
    except LookupError:
        return data.decode("utf-8", errors="replace")


def merge_parameters(part: BodyPart) -> dict[str, str]:
    merged = {key.lower(): value for key, value in part.parameters.items()}
    merged.update({key.lower(): value for key, value in part.disposition_parameters.items()})
    return merged


def _append(text: str, chunk: str, separator: str) -> str:
    if text and chunk:
        return text + separator + chunk
    return text + chunk


class MimeInterpreter:
    """Reads one message. Attachments are collected on the interpreter, not the message."""

    def __init__(self, session: MailSession, message_number: int):
        self.session = session
        self.message_number = message_number
        self.attachments: list[MailAttachment] = []

    def read(self, structure: BodyPart) -> str:
        return self._read_part(structure, "")

    def _fetch(self, path: str) -> bytes:
        if not path:
            return self.session.fetch_body(self.message_number)
        return self.session.fetch_part(self.message_number, path)

    def _read_part(self, part: BodyPart, path: str) -> str:
        parameters = merge_parameters(part)
        filename = parameters.get("filename") or parameters.get("name") or ""
        main_type = part.type.lower()

        data = b""
        if filename or main_type in ("text", "message"):
            data = decode_transfer(self._fetch(path), part.encoding)

        if filename:
            self.attachments.append(MailAttachment(filename=filename, data=data))

        text = ""
        if data and main_type == "text":
            content = decode_text(data, parameters.get("charset"))
            if part.subtype.lower() == "plain":
                text = _append(text, content.strip(), TEXT_SEPARATOR)
            else:
                text = _append(text, content, MARKUP_SEPARATOR)
        elif data and main_type == "message":
            text = _append(text, decode_text(data, None), TEXT_SEPARATOR)

        for index, child in enumerate(part.parts, start=1):
            child_path = f"{path}.{index}" if path else str(index)
            child_text = self._read_part(child, child_path)
            if child_text:
                text = _append(text, child_text, TEXT_SEPARATOR)

        return text
