"""
Action and Receipt models — the collaborator contract.

Actions describe one external operation (a package-manager call, a
build tool run, a directory removal). Receipts describe what happened.
Adapters take Actions and return Receipts; they never raise.

Commands are always argv lists. Nothing is handed to a shell.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class Action(BaseModel):
    """A requested external operation."""

    id: str                         # e.g. "package_install:rpm"
    adapter: str = "command"        # which adapter handles this
    description: str = ""           # human-readable, used in logs
    command: list[str] = Field(default_factory=list)
    params: dict[str, Any] = Field(default_factory=dict)

    needs_sudo: bool = False
    mutating: bool = True           # suppressed under dry-run
    timeout: int = 600
    env: dict[str, str] = Field(default_factory=dict)
    cwd: str | None = None

    @property
    def command_text(self) -> str:
        """The command as a single display string (for logs and reports)."""
        return " ".join(self.command)


class Receipt(BaseModel):
    """Result of an adapter execution.

    Captures the full outcome of an action. Failures are data, not
    exceptions: the orchestrator decides whether a failed receipt
    aborts the session.
    """

    adapter: str
    action_id: str
    status: Literal["ok", "skipped", "failed"] = "ok"

    started_at: str = Field(default_factory=_now_iso)
    ended_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    output: str = ""
    error: str | None = None
    return_code: int | None = None

    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """Whether the action succeeded."""
        return self.status == "ok"

    @property
    def failed(self) -> bool:
        """Whether the action failed."""
        return self.status == "failed"

    @property
    def skipped(self) -> bool:
        return self.status == "skipped"

    @classmethod
    def success(
        cls,
        adapter: str,
        action_id: str,
        output: str = "",
        **kwargs: Any,
    ) -> Receipt:
        """Create a success receipt."""
        return cls(
            adapter=adapter,
            action_id=action_id,
            status="ok",
            output=output,
            **kwargs,
        )

    @classmethod
    def failure(
        cls,
        adapter: str,
        action_id: str,
        error: str,
        **kwargs: Any,
    ) -> Receipt:
        """Create a failure receipt."""
        return cls(
            adapter=adapter,
            action_id=action_id,
            status="failed",
            error=error,
            **kwargs,
        )

    @classmethod
    def skip(
        cls,
        adapter: str,
        action_id: str,
        reason: str = "",
        **kwargs: Any,
    ) -> Receipt:
        """Create a skip receipt."""
        return cls(
            adapter=adapter,
            action_id=action_id,
            status="skipped",
            output=reason,
            **kwargs,
        )
