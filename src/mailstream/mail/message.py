from __future__ import annotations

import threading
import weakref
from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import TYPE_CHECKING, Any

from mailstream.errors import ContentUnavailable
from mailstream.mail.attachment import MailAttachment

if TYPE_CHECKING:
    from mailstream.mail.connection import MailConnection


class MailMessage:
    """One mailbox entry, loaded from its connection on first field access.

    All fields arrive together in a single ``read_message_contents`` call.
    Every setter keeps the first value it receives, so a repeated read never
    changes what a caller has already observed.
    """

    def __init__(self, connection: MailConnection, message_number: int, generation: int = 0):
        self._connection_ref = weakref.ref(connection)
        self._message_number = message_number
        self._generation = generation
        self._contents_loaded = False
        self._fields: dict[str, Any] = {}
        self._attachments: list[MailAttachment] | None = None
        self._load_lock = threading.Lock()

    @classmethod
    def from_message_number(
        cls,
        connection: MailConnection,
        message_number: int,
        read_now: bool = False,
    ) -> MailMessage:
        message = cls(connection, message_number, generation=connection.generation)
        if read_now:
            message.load()
        return message

    def __repr__(self) -> str:
        return f"MailMessage(number={self._message_number}, loaded={self._contents_loaded})"

    @property
    def message_number(self) -> int:
        return self._message_number

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def connection(self) -> MailConnection | None:
        return self._connection_ref()

    @property
    def contents_loaded(self) -> bool:
        return self._contents_loaded

    def load(self) -> None:
        if self._contents_loaded:
            return
        with self._load_lock:
            if self._contents_loaded:
                return
            connection = self._connection_ref()
            if connection is None:
                raise ContentUnavailable(
                    "Connection for message is gone", details={"message_number": self._message_number}
                )
            if not connection.read_message_contents(self):
                raise ContentUnavailable(details={"message_number": self._message_number})
            self._contents_loaded = True

    def _get(self, name: str, default: Any) -> Any:
        self.load()
        value = self._fields.get(name)
        return default if value is None else value

    def _set_once(self, name: str, value: Any) -> None:
        if self._fields.get(name) is not None:
            return
        self._fields[name] = value

    @property
    def subject(self) -> str:
        return self._get("subject", "")

    @property
    def body(self) -> str:
        return self._get("body", "")

    @property
    def from_(self) -> str:
        return self._get("from", "")

    @property
    def to(self) -> str:
        return self._get("to", "")

    @property
    def date(self) -> str:
        return self._get("date", "")

    @property
    def seen(self) -> bool:
        return bool(self._get("seen", False))

    @property
    def draft(self) -> bool:
        return bool(self._get("draft", False))

    @property
    def sent_at(self) -> datetime | None:
        value = self.date
        if not value:
            return None
        try:
            return parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None

    @property
    def attachments(self) -> list[MailAttachment]:
        self.load()
        return list(self._attachments or [])

    def get_attachment(self, filename: str) -> MailAttachment | None:
        for attachment in self.attachments:
            if attachment.filename == filename:
                return attachment
        return None

    def set_subject(self, value: str | None) -> None:
        self._set_once("subject", value)

    def set_body(self, value: str | None) -> None:
        self._set_once("body", value)

    def set_from(self, value: str | None) -> None:
        self._set_once("from", value)

    def set_to(self, value: str | None) -> None:
        self._set_once("to", value)

    def set_date(self, value: str | None) -> None:
        self._set_once("date", value)

    def set_seen(self, value: bool | None) -> None:
        self._set_once("seen", value)

    def set_draft(self, value: bool | None) -> None:
        self._set_once("draft", value)

    def set_attachments(self, attachments: list[MailAttachment] | None) -> None:
        if self._attachments is not None or attachments is None:
            return
        self._attachments = list(attachments)

    def delete(self, expunge: bool = False) -> bool:
        connection = self._connection_ref()
        if connection is None:
            return False
        return connection.delete_email(self, expunge)
