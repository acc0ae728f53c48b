from __future__ import annotations

import platform
import sys

from mailstream.config import Settings
from mailstream.registry import ConnectionRegistry


def run_doctor_checks(settings: Settings, registry: ConnectionRegistry) -> list[dict[str, str]]:
    checks: list[dict[str, str]] = []

    checks.append(
        {
            "check": "python_version",
            "status": "ok" if sys.version_info >= (3, 11) else "warn",
            "detail": platform.python_version(),
        }
    )

    for label, path in [
        ("logs_dir", settings.logs_dir),
        ("attachments_dir", settings.attachments_dir),
        ("exports_dir", settings.exports_dir),
    ]:
        checks.append({"check": label, "status": "ok" if path.exists() else "warn", "detail": str(path)})

    for name in registry.names():
        profile = registry.profile(name)
        try:
            connection = registry.get_connection(name)
        except Exception as exc:  # noqa: BLE001
            checks.append({"check": f"profile_{name}", "status": "fail", "detail": str(exc)})
            continue
        checks.append(
            {
                "check": f"profile_{name}",
                "status": "ok" if connection is not None else "warn",
                "detail": profile.address if profile else name,
            }
        )

    if not registry.names():
        checks.append(
            {
                "check": "profiles",
                "status": "warn",
                "detail": "No mail profiles configured (set MAILSTREAM_PROFILES)",
            }
        )

    return checks
