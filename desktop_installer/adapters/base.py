"""
Adapter base — the contract between the orchestrator and external tools.

The orchestrator never calls subprocess or touches the filesystem of
the target system directly. It builds an Action and hands it to an
adapter through the registry. Adapters return Receipts and never raise,
which keeps every external collaborator substitutable in tests.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field

from desktop_installer.core.models.action import Action, Receipt


class ExecutionContext(BaseModel):
    """Everything an adapter needs to execute an action."""

    action: Action
    workdir: str = "."
    dry_run: bool = False
    params: dict[str, Any] = Field(default_factory=dict)

    @property
    def cwd(self) -> str:
        """Resolved working directory for the action."""
        return self.action.cwd or self.workdir


class Adapter(ABC):
    """Abstract base class for all adapters.

    To create a new adapter:
        1. Subclass Adapter
        2. Implement name, is_available, validate, execute
        3. Register it in the AdapterRegistry
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """The adapter identifier (e.g., 'command', 'filesystem')."""

    @abstractmethod
    def is_available(self) -> bool:
        """Check if the underlying tool is usable. Must not raise."""

    @abstractmethod
    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        """Validate that the action can be executed.

        Returns:
            (is_valid, error_message). error_message is empty if valid.
        """

    @abstractmethod
    def execute(self, context: ExecutionContext) -> Receipt:
        """Execute the action and return a receipt.

        MUST never raise. All failures are captured in the Receipt.
        """

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
