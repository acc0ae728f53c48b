from __future__ import annotations

import hashlib
import json
import logging
import mimetypes
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from mailstream.mail.attachment import MailAttachment
from mailstream.mail.message import MailMessage

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^\w.\- ]+", re.UNICODE)


@dataclass(slots=True)
class SavedAttachment:
    filename: str
    path: Path
    sha256: str
    size_bytes: int
    reused: bool


class AttachmentStore:
    """Attachments on disk, laid out as ``<root>/<profile>/<message number>/``.

    Identical content is written once; later copies point at the first file
    through the per-message ``meta.json`` index.
    """

    def __init__(self, root: Path):
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)
        self._known: dict[str, Path] = self._scan_index()

    def _scan_index(self) -> dict[str, Path]:
        known: dict[str, Path] = {}
        for meta_path in self.root.rglob("meta.json"):
            try:
                entries = json.loads(meta_path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as exc:
                logger.warning("Unreadable attachment index %s: %s", meta_path, exc)
                continue
            if not isinstance(entries, list):
                entries = [entries]
            for entry in entries:
                path = Path(entry.get("local_path_abs") or "")
                if entry.get("sha256") and path.is_file():
                    known.setdefault(entry["sha256"], path)
        return known

    @staticmethod
    def _sha256(data: bytes) -> str:
        digest = hashlib.sha256()
        digest.update(data)
        return digest.hexdigest()

    @staticmethod
    def safe_name(value: str | None, fallback: str = "attachment.bin") -> str:
        cleaned = (value or "").replace("/", "_").replace("\\", "_")
        cleaned = _UNSAFE_CHARS.sub("_", cleaned).strip(" .")
        if not cleaned:
            return fallback
        return cleaned[:120]

    def message_dir(self, profile: str, message_number: int) -> Path:
        return self.root / self.safe_name(profile, "default") / str(message_number)

    def _append_meta(self, message_dir: Path, meta_entry: dict) -> None:
        meta_path = message_dir / "meta.json"
        if meta_path.exists():
            current = json.loads(meta_path.read_text(encoding="utf-8"))
            if not isinstance(current, list):
                current = [current]
        else:
            current = []
        current.append(meta_entry)
        meta_path.write_text(json.dumps(current, ensure_ascii=False, indent=2), encoding="utf-8")

    def _unique_path(self, directory: Path, filename: str) -> Path:
        candidate = directory / filename
        stem, suffix = Path(filename).stem, Path(filename).suffix
        index = 1
        while candidate.exists():
            candidate = directory / f"{stem}_{index}{suffix}"
            index += 1
        return candidate

    def save_attachment(self, profile: str, message_number: int, attachment: MailAttachment) -> SavedAttachment:
        sha256_value = self._sha256(attachment.data)
        message_dir = self.message_dir(profile, message_number)
        message_dir.mkdir(parents=True, exist_ok=True)

        existing = self._known.get(sha256_value)
        reused = existing is not None and existing.is_file()
        if reused:
            local_path = existing.resolve()
        else:
            local_path = self._unique_path(message_dir, self.safe_name(attachment.filename)).resolve()
            if not attachment.save(local_path):
                raise OSError(f"Unable to write attachment {attachment.filename!r} to {local_path}")
            self._known[sha256_value] = local_path

        mime, _ = mimetypes.guess_type(attachment.filename)
        self._append_meta(
            message_dir,
            {
                "profile": profile,
                "message_number": message_number,
                "filename": attachment.filename,
                "saved_at": datetime.now(timezone.utc).isoformat(),
                "sha256": sha256_value,
                "mime": mime,
                "size_bytes": len(attachment.data),
                "local_path_abs": str(local_path),
            },
        )
        return SavedAttachment(
            filename=attachment.filename,
            path=local_path,
            sha256=sha256_value,
            size_bytes=len(attachment.data),
            reused=reused,
        )

    def save_message(self, profile: str, message: MailMessage) -> list[SavedAttachment]:
        return [
            self.save_attachment(profile, message.message_number, attachment)
            for attachment in message.attachments
        ]
