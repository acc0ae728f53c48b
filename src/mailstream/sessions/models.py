from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(slots=True, frozen=True)
class SessionTarget:
    hostname: str
    port: int
    suffix: str
    mailbox: str

    @property
    def protocol(self) -> str:
        return self.suffix.split("/", 1)[0]

    @property
    def ssl(self) -> bool:
        return "/ssl" in self.suffix

    def __str__(self) -> str:
        return f"{{{self.hostname}:{self.port}/{self.suffix}}}{self.mailbox}"


@dataclass(slots=True)
class MessageOverview:
    seen: bool | None = None
    draft: bool | None = None
    subject: str | None = None
    from_: str | None = None
    to: str | None = None
    date: str | None = None


@dataclass(slots=True)
class BodyPart:
    """One node of a message's MIME structure as reported by the server.

    ``parameters`` holds Content-Type parameters and
    ``disposition_parameters`` the Content-Disposition ones, both keyed as
    the server sent them.
    """

    type: str
    subtype: str
    encoding: str = "7bit"
    parameters: dict[str, str] = field(default_factory=dict)
    disposition_parameters: dict[str, str] = field(default_factory=dict)
    parts: list[BodyPart] = field(default_factory=list)

    @property
    def mime_type(self) -> str:
        return f"{self.type}/{self.subtype}".lower()

    @property
    def is_multipart(self) -> bool:
        return self.type.lower() == "multipart"
