"""
Filesystem adapter — removals and probes with receipts.

Used for the few filesystem mutations the orchestrator performs on the
target system itself (user configuration removal), so they are
dry-run aware and show up in the logs like any other action.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from desktop_installer.adapters.base import Adapter, ExecutionContext
from desktop_installer.core.models.action import Receipt

logger = logging.getLogger(__name__)

_OPERATIONS = ("exists", "remove")


class FilesystemAdapter(Adapter):
    """File and directory operations.

    Action params:
        operation (str): One of 'exists', 'remove'.
        path (str): Absolute target path (``~`` is expanded).
    """

    @property
    def name(self) -> str:
        return "filesystem"

    def is_available(self) -> bool:
        return True

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        operation = context.action.params.get("operation", "")
        if operation not in _OPERATIONS:
            return False, f"Unknown operation: {operation!r}"
        if not context.action.params.get("path"):
            return False, "Missing required param: 'path'"
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        action = context.action
        operation = action.params["operation"]
        target = Path(action.params["path"]).expanduser()

        if operation == "exists":
            return Receipt.success(
                adapter=self.name,
                action_id=action.id,
                output="present" if target.exists() else "absent",
                metadata={"exists": target.exists(), "path": str(target)},
            )

        if not target.exists():
            return Receipt.skip(
                adapter=self.name,
                action_id=action.id,
                reason=f"{target} does not exist",
            )

        try:
            if target.is_dir() and not target.is_symlink():
                shutil.rmtree(target)
            else:
                target.unlink()
        except OSError as e:
            return Receipt.failure(
                adapter=self.name,
                action_id=action.id,
                error=f"Cannot remove {target}: {e}",
            )

        logger.debug("Removed %s", target)
        return Receipt.success(
            adapter=self.name,
            action_id=action.id,
            output=f"removed {target}",
        )
