from __future__ import annotations

from datetime import datetime, timezone

import pytest
from imapclient.exceptions import IMAPClientError, LoginError
from imapclient.response_types import Address, Envelope

from mailstream.errors import ConnectionFailure
from mailstream.sessions import SessionTarget
from mailstream.sessions.imap import ImapSession, convert_body_structure
from mailstream.sessions.imap import session as imap_module

TARGET = SessionTarget(hostname="imap.example.com", port=993, suffix="imap/ssl", mailbox="INBOX")

TEXT_PLAIN = (b"text", b"plain", (b"charset", b"utf-8"), None, None, b"7bit", 5, 1, None, None, None, None)
PDF = (
    b"application",
    b"pdf",
    (b"name", b"=?utf-8?q?caf=C3=A9.pdf?="),
    None,
    None,
    b"base64",
    100,
    None,
    (b"attachment", (b"filename*", b"utf-8''caf%C3%A9.pdf")),
    None,
    None,
)


class FakeClient:
    def __init__(self, responses: dict[str, dict] | None = None):
        self.responses = responses or {}
        self.calls: list[tuple] = []
        self.fail_with: Exception | None = None

    def _record(self, *call) -> None:  # noqa: ANN002
        self.calls.append(call)
        if self.fail_with is not None:
            raise self.fail_with

    def noop(self):  # noqa: ANN201
        self._record("noop")
        return b"OK", []

    def search(self, criteria, charset=None):  # noqa: ANN001, ANN201
        self._record("search", criteria, charset)
        return [4, 2]

    def fetch(self, messages, data):  # noqa: ANN001, ANN201
        self._record("fetch", list(messages), list(data))
        return self.responses.get(data[0], {})

    def delete_messages(self, messages):  # noqa: ANN001, ANN201
        self._record("delete_messages", list(messages))

    def expunge(self):  # noqa: ANN201
        self._record("expunge")

    def close_folder(self):  # noqa: ANN201
        self._record("close_folder")

    def logout(self):  # noqa: ANN201
        self._record("logout")

    def shutdown(self):  # noqa: ANN201
        self._record("shutdown")


def test_convert_single_text_part() -> None:
    part = convert_body_structure(TEXT_PLAIN)
    assert part.mime_type == "text/plain"
    assert part.encoding == "7bit"
    assert part.parameters == {"charset": "utf-8"}
    assert part.parts == []


def test_convert_multipart_with_attachment() -> None:
    structure = convert_body_structure(([TEXT_PLAIN, PDF], b"MIXED", (b"boundary", b"xyz"), None, None, None))

    assert structure.is_multipart
    assert structure.subtype == "mixed"
    assert structure.parameters == {"boundary": "xyz"}
    assert [p.mime_type for p in structure.parts] == ["text/plain", "application/pdf"]

    pdf = structure.parts[1]
    assert pdf.encoding == "base64"
    assert pdf.parameters == {"name": "café.pdf"}
    assert pdf.disposition_parameters == {"filename": "café.pdf"}


def test_convert_raw_nested_multipart() -> None:
    alternative = (TEXT_PLAIN, (b"text", b"html", (), None, None, b"quoted-printable", 9, 1, None, None, None, None), b"alternative")
    structure = convert_body_structure(([alternative, PDF], b"mixed"))

    assert [p.mime_type for p in structure.parts] == ["multipart/alternative", "application/pdf"]
    assert [p.mime_type for p in structure.parts[0].parts] == ["text/plain", "text/html"]
    assert structure.parts[0].parts[1].encoding == "quoted-printable"


def test_convert_encapsulated_message() -> None:
    inner = (TEXT_PLAIN, PDF, b"mixed")
    forwarded = (
        b"message",
        b"rfc822",
        None,
        None,
        None,
        b"7bit",
        500,
        None,
        inner,
        10,
        None,
        (b"attachment", (b"filename", b"fwd.eml")),
        None,
    )

    part = convert_body_structure(forwarded)

    assert part.mime_type == "message/rfc822"
    assert part.disposition_parameters == {"filename": "fwd.eml"}
    assert [p.mime_type for p in part.parts] == ["text/plain", "application/pdf"]


def test_fetch_overview_reads_envelope_and_flags() -> None:
    envelope = Envelope(
        datetime(2026, 9, 1, 10, 0, tzinfo=timezone.utc),
        b"=?utf-8?q?Hi_there?=",
        (Address(b"Alice", None, b"alice", b"example.com"),),
        None,
        None,
        (Address(None, None, b"bob", b"example.com"), Address(None, None, b"carol", b"example.com")),
        None,
        None,
        None,
        b"<id@example.com>",
    )
    client = FakeClient({"ENVELOPE": {7: {b"FLAGS": (b"\\Seen",), b"ENVELOPE": envelope}}})

    overview = ImapSession(client, TARGET).fetch_overview(7)

    assert overview.seen is True
    assert overview.draft is False
    assert overview.subject == "Hi there"
    assert overview.from_ == "Alice <alice@example.com>"
    assert overview.to == "bob@example.com, carol@example.com"
    assert overview.date == "Tue, 01 Sep 2026 10:00:00 +0000"


def test_fetch_overview_of_missing_message() -> None:
    assert ImapSession(FakeClient(), TARGET).fetch_overview(9) is None


def test_sections_are_fetched_without_setting_seen() -> None:
    client = FakeClient(
        {
            "BODY.PEEK[1.2]": {3: {b"BODY[1.2]": b"part", b"SEQ": 3}},
            "BODY.PEEK[TEXT]": {3: {b"BODY[TEXT]": b"whole"}},
        }
    )
    session = ImapSession(client, TARGET)

    assert session.fetch_part(3, "1.2") == b"part"
    assert session.fetch_body(3) == b"whole"
    assert client.calls[0] == ("fetch", [3], ["BODY.PEEK[1.2]"])


def test_search_delete_and_expunge() -> None:
    client = FakeClient()
    session = ImapSession(client, TARGET)

    assert session.search('SUBJECT "x"') == [4, 2]
    session.delete(4)
    session.expunge()

    assert ("delete_messages", [4]) in client.calls
    assert ("expunge",) in client.calls
    assert ("search", 'SUBJECT "x"', None) in client.calls


def test_search_with_non_ascii_criteria_uses_utf8() -> None:
    client = FakeClient()
    session = ImapSession(client, TARGET)

    assert session.search('SUBJECT "Привет"') == [4, 2]
    assert client.calls == [("search", 'SUBJECT "Привет"', "UTF-8")]


def test_server_errors_become_connection_failures() -> None:
    client = FakeClient()
    client.fail_with = IMAPClientError("connection reset")
    session = ImapSession(client, TARGET)

    assert session.ping() is False
    with pytest.raises(ConnectionFailure) as excinfo:
        session.search("ALL")
    assert excinfo.value.details["operation"] == "search"


def test_close_with_and_without_expunge() -> None:
    client = FakeClient()
    ImapSession(client, TARGET).close()
    assert client.calls == [("close_folder",), ("logout",)]

    client = FakeClient()
    ImapSession(client, TARGET).close(expunge=False)
    assert client.calls == [("logout",)]


def test_open_login_failure_shuts_down(monkeypatch: pytest.MonkeyPatch) -> None:
    created: list[FakeClient] = []

    class RejectingClient(FakeClient):
        def __init__(self, host, port, ssl, use_uid, timeout):  # noqa: ANN001
            super().__init__()
            self.options = (host, port, ssl, use_uid, timeout)
            created.append(self)

        def login(self, username, password):  # noqa: ANN001, ANN201
            raise LoginError("bad credentials")

    monkeypatch.setattr(imap_module, "IMAPClient", RejectingClient)

    with pytest.raises(ConnectionFailure):
        ImapSession.open(TARGET, "user", "wrong", timeout=5)

    assert created[0].options == ("imap.example.com", 993, True, False, 5)
    assert ("shutdown",) in created[0].calls
