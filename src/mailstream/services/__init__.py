from .doctor import run_doctor_checks
from .exporter import export_messages

__all__ = ["export_messages", "run_doctor_checks"]
