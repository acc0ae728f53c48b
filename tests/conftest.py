from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from mailstream.config import Settings
from mailstream.errors import ConnectionFailure
from mailstream.mail import MailConnection
from mailstream.sessions import BodyPart, MessageOverview


@dataclass
class FakeEntry:
    overview: MessageOverview
    structure: BodyPart
    sections: dict[str, bytes] = field(default_factory=dict)


class FakeMailbox:
    """Server-side state shared by every session a fake factory opens."""

    def __init__(self) -> None:
        self.entries: dict[int, FakeEntry] = {}
        self.search_result: list[int] | None = None
        self.down = False

    def add(
        self,
        number: int,
        structure: BodyPart,
        sections: dict[str, bytes] | None = None,
        **overview: object,
    ) -> FakeEntry:
        entry = FakeEntry(overview=MessageOverview(**overview), structure=structure, sections=sections or {})
        self.entries[number] = entry
        return entry


class FakeSession:
    def __init__(self, mailbox: FakeMailbox):
        self.mailbox = mailbox
        self.alive = True
        self.closed = False
        self.close_expunge: bool | None = None
        self.abandoned = False
        self.deleted: list[int] = []
        self.expunged = 0
        self.queries: list[str] = []
        self.overview_calls: list[int] = []
        self.fetches: list[tuple[int, str]] = []

    def ping(self) -> bool:
        return self.alive

    def search(self, query: str) -> list[int]:
        self.queries.append(query)
        if self.mailbox.search_result is not None:
            return list(self.mailbox.search_result)
        return list(self.mailbox.entries)

    def fetch_overview(self, number: int) -> MessageOverview | None:
        self.overview_calls.append(number)
        entry = self.mailbox.entries.get(number)
        return entry.overview if entry else None

    def fetch_structure(self, number: int) -> BodyPart | None:
        entry = self.mailbox.entries.get(number)
        return entry.structure if entry else None

    def fetch_body(self, number: int) -> bytes:
        self.fetches.append((number, ""))
        return self.mailbox.entries[number].sections.get("", b"")

    def fetch_part(self, number: int, section: str) -> bytes:
        self.fetches.append((number, section))
        try:
            return self.mailbox.entries[number].sections[section]
        except KeyError as exc:
            raise ConnectionFailure(f"no part {section}") from exc

    def delete(self, number: int) -> None:
        self.deleted.append(number)

    def expunge(self) -> None:
        self.expunged += 1

    def close(self, expunge: bool = True) -> None:
        self.closed = True
        self.close_expunge = expunge

    def abandon(self) -> None:
        self.abandoned = True


class FakeSessionFactory:
    def __init__(self, mailbox: FakeMailbox):
        self.mailbox = mailbox
        self.calls: list[dict[str, object]] = []
        self.sessions: list[FakeSession] = []

    def __call__(self, target, username, password, *, retries, retry_delay=0.0, timeout=None):  # noqa: ANN001
        self.calls.append(
            {
                "target": target,
                "username": username,
                "password": password,
                "retries": retries,
                "retry_delay": retry_delay,
                "timeout": timeout,
            }
        )
        if self.mailbox.down:
            raise ConnectionFailure("server unreachable", details={"target": str(target)})
        session = FakeSession(self.mailbox)
        self.sessions.append(session)
        return session

    @property
    def current(self) -> FakeSession:
        return self.sessions[-1]


def _text_part(subtype: str = "plain", encoding: str = "7bit", **parameters: str) -> BodyPart:
    return BodyPart(type="text", subtype=subtype, encoding=encoding, parameters=dict(parameters))


@pytest.fixture()
def mailbox() -> FakeMailbox:
    return FakeMailbox()


@pytest.fixture()
def session_factory(mailbox: FakeMailbox) -> FakeSessionFactory:
    return FakeSessionFactory(mailbox)


@pytest.fixture()
def connection(session_factory: FakeSessionFactory):
    conn = MailConnection(
        "mail.example.com",
        143,
        "imap",
        "INBOX",
        "user@example.com",
        "secret",
        session_factory=session_factory,
    )
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture()
def simple_message(mailbox: FakeMailbox) -> FakeEntry:
    return mailbox.add(
        1,
        _text_part(charset="utf-8"),
        {"": b"Hello there\r\n"},
        seen=True,
        draft=False,
        subject="Greetings",
        from_="Alice <alice@example.com>",
        to="bob@example.com",
        date="Tue, 01 Sep 2026 10:00:00 +0000",
    )


@pytest.fixture()
def settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Settings:
    root = tmp_path / "project"
    root.mkdir(parents=True, exist_ok=True)
    monkeypatch.setenv("MAILSTREAM_HOME", str(root))
    monkeypatch.delenv("MAILSTREAM_PROFILES", raising=False)
    s = Settings.load(base_dir=root)
    s.ensure_directories()
    return s


@pytest.fixture()
def test_logger() -> logging.Logger:
    logger = logging.getLogger("mailstream-test")
    logger.handlers.clear()
    logger.filters.clear()
    logger.addHandler(logging.NullHandler())
    logger.setLevel(logging.INFO)
    return logger
