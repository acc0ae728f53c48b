from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path

import pandas as pd

from mailstream.errors import ContentUnavailable
from mailstream.mail.message import MailMessage

EXPORT_COLUMNS = ["message_number", "date", "from", "to", "subject", "seen", "draft", "attachments"]


def message_rows(messages: Iterable[MailMessage]) -> list[dict[str, object]]:
    rows: list[dict[str, object]] = []
    for message in messages:
        try:
            rows.append(
                {
                    "message_number": message.message_number,
                    "date": message.date,
                    "from": message.from_,
                    "to": message.to,
                    "subject": message.subject,
                    "seen": message.seen,
                    "draft": message.draft,
                    "attachments": ", ".join(a.filename for a in message.attachments),
                }
            )
        except ContentUnavailable:
            continue
    return rows


def export_messages(messages: Iterable[MailMessage], formats: list[str], out_dir: Path) -> list[Path]:
    out_dir.mkdir(parents=True, exist_ok=True)
    df = pd.DataFrame(message_rows(messages), columns=EXPORT_COLUMNS)

    created_files: list[Path] = []
    if "csv" in formats:
        csv_path = (out_dir / "mailstream_export.csv").resolve()
        df.to_csv(csv_path, index=False, encoding="utf-8-sig")
        created_files.append(csv_path)

    if "xlsx" in formats:
        xlsx_path = (out_dir / "mailstream_export.xlsx").resolve()
        with pd.ExcelWriter(xlsx_path, engine="openpyxl") as writer:
            df.to_excel(writer, index=False, sheet_name="messages")
        created_files.append(xlsx_path)

    return created_files
