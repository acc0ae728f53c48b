from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class MailAttachment:
    filename: str
    data: bytes

    def save(self, destination: str | Path) -> bool:
        """Write the decoded bytes to ``destination``; ``False`` if the write fails."""
        if not isinstance(destination, (str, Path)) or not str(destination):
            return False
        try:
            Path(destination).write_bytes(self.data)
        except OSError as exc:
            logger.warning("Attachment %r not saved to %s: %s", self.filename, destination, exc)
            return False
        return True
