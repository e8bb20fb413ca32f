"""
Domain models — Pydantic types for the installer.

    from desktop_installer.core.models import Action, Receipt, SessionLedger
"""

from desktop_installer.core.models.action import Action, Receipt
from desktop_installer.core.models.reports import DownloadRecord, ErrorReport
from desktop_installer.core.models.session import (
    Phase,
    PhaseRecord,
    PhaseStatus,
    SessionLedger,
)

__all__ = [
    # action.py
    "Action",
    "Receipt",
    # reports.py
    "DownloadRecord",
    "ErrorReport",
    # session.py
    "Phase",
    "PhaseRecord",
    "PhaseStatus",
    "SessionLedger",
]
