from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from mailstream.mail.ports import DEFAULT_PORTS, get_default_port

logger = logging.getLogger(__name__)

DEFAULT_PROTOCOL = "imap"
DEFAULT_MAILBOX = "INBOX"
PROFILE_KEYS = ("hostname", "type", "port", "username", "password", "mailbox")


@dataclass(slots=True)
class MailProfile:
    name: str
    hostname: str
    protocol: str
    port: int
    username: str
    password: str
    mailbox: str = DEFAULT_MAILBOX

    @property
    def address(self) -> str:
        return f"{self.username}@{self.hostname}:{self.port}/{self.protocol}"


def load_profiles(raw: Mapping[str, Mapping[str, object]]) -> dict[str, MailProfile]:
    """Turn raw named settings into validated profiles.

    Entries without a hostname or username are skipped, as are entries with
    a port that does not parse. Unknown or missing types fall back to imap
    and a missing port comes from the default table.
    """
    profiles: dict[str, MailProfile] = {}
    for name, entry in raw.items():
        key = str(name).strip().lower()
        if not key:
            continue
        if key in profiles:
            logger.warning("Duplicate mail profile %r ignored", key)
            continue

        hostname = str(entry.get("hostname") or "").strip()
        username = str(entry.get("username") or "").strip()
        if not hostname or not username:
            logger.warning("Mail profile %r skipped: hostname and username are required", key)
            continue

        protocol = str(entry.get("type") or "").strip().lower()
        if protocol not in DEFAULT_PORTS:
            protocol = DEFAULT_PROTOCOL

        port_raw = entry.get("port")
        if port_raw is None or str(port_raw).strip() == "":
            port = get_default_port(protocol)
            if not isinstance(port, int):
                logger.warning("Mail profile %r skipped: no default port for %s", key, protocol)
                continue
        else:
            try:
                port = int(str(port_raw).strip())
            except ValueError:
                logger.warning("Mail profile %r skipped: invalid port %r", key, port_raw)
                continue

        profiles[key] = MailProfile(
            name=key,
            hostname=hostname,
            protocol=protocol,
            port=port,
            username=username,
            password=str(entry.get("password") or ""),
            mailbox=str(entry.get("mailbox") or DEFAULT_MAILBOX),
        )
    return profiles


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(slots=True)
class Settings:
    root_dir: Path
    logs_dir: Path
    attachments_dir: Path
    exports_dir: Path
    profiles: dict[str, MailProfile] = field(default_factory=dict)
    keep_alive: bool = True
    retry_delay_sec: float = 0.0
    timeout_sec: float | None = 30.0

    @classmethod
    def load(cls, base_dir: Path | None = None) -> Settings:
        load_dotenv(override=False)

        root_env = os.getenv("MAILSTREAM_HOME")
        root_dir = Path(root_env).expanduser().resolve() if root_env else (base_dir or Path.cwd()).resolve()

        logs_dir = Path(os.getenv("MAILSTREAM_LOG_DIR", root_dir / "logs")).expanduser().resolve()
        attachments_dir = Path(
            os.getenv("MAILSTREAM_ATTACHMENTS_DIR", root_dir / "attachments")
        ).expanduser().resolve()
        exports_dir = Path(os.getenv("MAILSTREAM_EXPORT_DIR", root_dir / "exports")).expanduser().resolve()

        keep_alive = _env_flag("MAILSTREAM_KEEP_ALIVE", True)
        retry_delay_sec = float(os.getenv("MAILSTREAM_RETRY_DELAY_SEC", "0"))
        timeout_raw = os.getenv("MAILSTREAM_TIMEOUT_SEC", "30")
        timeout_sec = float(timeout_raw) if timeout_raw.strip() else None

        return cls(
            root_dir=root_dir,
            logs_dir=logs_dir,
            attachments_dir=attachments_dir,
            exports_dir=exports_dir,
            profiles=load_profiles(cls._read_profile_env()),
            keep_alive=keep_alive,
            retry_delay_sec=retry_delay_sec,
            timeout_sec=timeout_sec,
        )

    @staticmethod
    def _read_profile_env() -> dict[str, dict[str, str | None]]:
        """
        MAILSTREAM_PROFILES lists profile names, comma separated.
        Each name reads MAILSTREAM_<NAME>_HOSTNAME, _TYPE, _PORT, _USERNAME,
        _PASSWORD and _MAILBOX.
        """
        raw: dict[str, dict[str, str | None]] = {}
        names = [n.strip() for n in os.getenv("MAILSTREAM_PROFILES", "").split(",") if n.strip()]
        for name in names:
            prefix = f"MAILSTREAM_{name.upper().replace('-', '_')}"
            if name.lower() in raw:
                logger.warning("Duplicate mail profile %r ignored", name)
                continue
            raw[name.lower()] = {key: os.getenv(f"{prefix}_{key.upper()}") for key in PROFILE_KEYS}
        return raw

    def ensure_directories(self) -> None:
        for path in [self.root_dir, self.logs_dir, self.attachments_dir, self.exports_dir]:
            path.mkdir(parents=True, exist_ok=True)
