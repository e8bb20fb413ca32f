"""
Error reports and download records.

Both are written to disk: error reports into the append-only error
log, download records as sidecars next to cached artifacts.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class ErrorReport(BaseModel):
    """Everything known about one fatal failure."""

    timestamp: str = Field(default_factory=_now_iso)
    session_id: str = ""

    exit_code: int = 1
    category: str = "general"
    message: str = ""
    exception_type: str = ""

    # Where it happened
    command: str = ""              # failing external command, if any
    source: str = ""               # file:line of the raise site
    function: str = ""

    # Outcome of the error controller
    recovery_attempted: bool = False
    recovered: bool = False
    rollback_actions: list[str] = Field(default_factory=list)
    rollback_failures: list[str] = Field(default_factory=list)

    environment: dict[str, str] = Field(default_factory=dict)
    context: dict[str, Any] = Field(default_factory=dict)


class DownloadRecord(BaseModel):
    """Provenance of a cached artifact."""

    url: str
    path: str
    checksum: str | None = None
    algorithm: str = "sha256"
    size_bytes: int = 0
    cached_at: float = 0.0         # epoch seconds

    def age_seconds(self, now: float) -> float:
        return now - self.cached_at
