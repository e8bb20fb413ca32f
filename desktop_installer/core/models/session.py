"""
Session ledger — per-run phase bookkeeping.

One ledger per orchestrator run. It records which phases were planned,
which ran, how they ended and how long they took. It is persisted at
the end of the session so a failed run can be inspected afterwards.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class Phase(StrEnum):
    """Named workflow steps."""

    VALIDATE = "validate"
    INSTALL_DEPENDENCIES = "install_dependencies"
    DOWNLOAD = "download"
    BUILD = "build"
    OPTIMIZE = "optimize"
    PACKAGE_INSTALL = "package_install"
    INTEGRATE = "integrate"
    REMOVE_PACKAGE = "remove_package"
    REMOVE_CONFIG = "remove_config"
    INTEGRATION_CLEANUP = "integration_cleanup"
    EXISTENCE_PROBE = "existence_probe"


class PhaseStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class PhaseRecord(BaseModel):
    """Outcome of one phase."""

    phase: Phase
    optional: bool = False
    status: PhaseStatus = PhaseStatus.PENDING
    started_at: str | None = None
    ended_at: str | None = None
    duration_ms: int = 0
    message: str = ""


class SessionLedger(BaseModel):
    """Root record of one installer run."""

    schema_version: int = 1

    session_id: str
    action: str = ""
    dry_run: bool = False
    temp_dir: str = ""
    log_file: str = ""

    started_at: str = Field(default_factory=_now_iso)
    ended_at: str | None = None
    exit_code: int | None = None

    phases: list[PhaseRecord] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    def plan(self, phases: list[tuple[Phase, bool]]) -> None:
        """Register the ordered phase list as pending."""
        self.phases = [PhaseRecord(phase=p, optional=opt) for p, opt in phases]

    def record(self, phase: Phase) -> PhaseRecord:
        """Get the record for a phase, adding it if it was not planned."""
        for rec in self.phases:
            if rec.phase == phase:
                return rec
        rec = PhaseRecord(phase=phase)
        self.phases.append(rec)
        return rec

    def status_of(self, phase: Phase) -> PhaseStatus:
        return self.record(phase).status

    def mark_running(self, phase: Phase) -> None:
        rec = self.record(phase)
        rec.status = PhaseStatus.RUNNING
        rec.started_at = _now_iso()

    def mark_done(
        self,
        phase: Phase,
        status: PhaseStatus,
        duration_ms: int = 0,
        message: str = "",
    ) -> None:
        rec = self.record(phase)
        rec.status = status
        rec.ended_at = _now_iso()
        rec.duration_ms = duration_ms
        rec.message = message

    def finish(self, exit_code: int) -> None:
        self.ended_at = _now_iso()
        self.exit_code = exit_code

    @property
    def failed_phases(self) -> list[Phase]:
        return [r.phase for r in self.phases if r.status == PhaseStatus.FAILED]
