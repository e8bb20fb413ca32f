"""
Adapter registry — central dispatch for collaborator actions.

The orchestrator never talks to adapters directly. The registry
resolves the adapter, validates the action, applies dry-run
suppression and times the call. It never raises.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from desktop_installer.adapters.base import Adapter, ExecutionContext
from desktop_installer.core.models.action import Action, Receipt

logger = logging.getLogger(__name__)


class AdapterRegistry:
    """Registry and dispatcher for adapters.

    Args:
        dry_run: Suppress mutating actions (they return ``skipped``
            receipts after validation). Read-only probes still run.
        workdir: Default working directory handed to adapters.
    """

    def __init__(self, dry_run: bool = False, workdir: str = "."):
        self._adapters: dict[str, Adapter] = {}
        self.dry_run = dry_run
        self.workdir = workdir

    @classmethod
    def default(cls, dry_run: bool = False, workdir: str = ".") -> AdapterRegistry:
        """Registry with the real command and filesystem adapters."""
        from desktop_installer.adapters.shell.command import CommandAdapter
        from desktop_installer.adapters.shell.filesystem import FilesystemAdapter

        registry = cls(dry_run=dry_run, workdir=workdir)
        registry.register(CommandAdapter())
        registry.register(FilesystemAdapter())
        return registry

    def register(self, adapter: Adapter) -> None:
        name = adapter.name
        if name in self._adapters:
            logger.debug("Overwriting existing adapter: %s", name)
        self._adapters[name] = adapter

    def get(self, name: str) -> Adapter | None:
        return self._adapters.get(name)

    def list_adapters(self) -> list[str]:
        return list(self._adapters.keys())

    def adapter_status(self) -> dict[str, dict[str, Any]]:
        """Availability of all registered adapters."""
        status = {}
        for name, adapter in self._adapters.items():
            try:
                available = adapter.is_available()
            except Exception:
                available = False
            status[name] = {
                "name": name,
                "available": available,
                "type": adapter.__class__.__name__,
            }
        return status

    def execute_action(self, action: Action) -> Receipt:
        """Execute an action through its adapter.

        1. Resolve the adapter
        2. Skip it if mutating under dry-run
        3. Validate the action
        4. Execute and time it
        """
        start_time = time.monotonic()

        adapter = self._adapters.get(action.adapter)
        if adapter is None:
            return Receipt.failure(
                adapter=action.adapter,
                action_id=action.id,
                error=f"No adapter registered for '{action.adapter}'",
            )

        context = ExecutionContext(
            action=action,
            workdir=self.workdir,
            dry_run=self.dry_run,
            params=action.params,
        )

        if self.dry_run and action.mutating:
            logger.info("[dry-run] Would run %s: %s", action.id, action.description or action.command_text)
            return Receipt.skip(
                adapter=action.adapter,
                action_id=action.id,
                reason=f"[dry-run] {action.description or action.command_text}",
                metadata={"dry_run": True},
            )

        try:
            is_valid, error_msg = adapter.validate(context)
        except Exception as e:
            is_valid, error_msg = False, f"validation error: {e}"
        if not is_valid:
            return Receipt.failure(
                adapter=action.adapter,
                action_id=action.id,
                error=f"Validation failed: {error_msg}",
                metadata={"command": action.command_text},
            )

        try:
            receipt = adapter.execute(context)
        except Exception as e:
            logger.error("Adapter %s raised during execution: %s", action.adapter, e)
            receipt = Receipt.failure(
                adapter=action.adapter,
                action_id=action.id,
                error=f"Unexpected error: {e}",
            )

        receipt.duration_ms = int((time.monotonic() - start_time) * 1000)
        return receipt
