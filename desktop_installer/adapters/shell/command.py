"""
Command adapter — run an external program from an argv list.

This is the single place where ``subprocess.run`` is called for
collaborator work (package manager, rpm, build/integration tools).
Commands are never run through a shell.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import time

from desktop_installer.adapters.base import Adapter, ExecutionContext
from desktop_installer.core.models.action import Receipt

logger = logging.getLogger(__name__)

# Output kept on receipts (tail), enough for diagnosis without flooding logs
_OUTPUT_TAIL = 4000


class CommandAdapter(Adapter):
    """Execute argv commands and capture their output.

    ``needs_sudo`` actions get a ``sudo`` prefix unless we already run as
    root. Extra environment variables from the action are layered on top
    of the current process environment.
    """

    @property
    def name(self) -> str:
        return "command"

    def is_available(self) -> bool:
        return True

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        command = context.action.command
        if not command:
            return False, "Missing command"
        if shutil.which(command[0]) is None and not os.path.isfile(command[0]):
            return False, f"Executable not found: {command[0]}"
        if context.action.needs_sudo and os.geteuid() != 0 and shutil.which("sudo") is None:
            return False, "Root privileges required but sudo is not installed"
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        action = context.action
        argv = list(action.command)
        if action.needs_sudo and os.geteuid() != 0:
            argv = ["sudo"] + argv

        env = os.environ.copy()
        env.update(action.env)

        logger.debug("Executing: %s (cwd=%s)", " ".join(argv), context.cwd)
        start = time.monotonic()

        try:
            result = subprocess.run(
                argv,
                cwd=context.cwd,
                env=env,
                capture_output=True,
                text=True,
                timeout=action.timeout,
            )
        except subprocess.TimeoutExpired:
            return Receipt.failure(
                adapter=self.name,
                action_id=action.id,
                error=f"Command timed out after {action.timeout}s",
                metadata={"command": action.command_text},
            )
        except OSError as e:
            return Receipt.failure(
                adapter=self.name,
                action_id=action.id,
                error=f"Command execution error: {e}",
                metadata={"command": action.command_text},
            )

        elapsed_ms = int((time.monotonic() - start) * 1000)
        stdout = (result.stdout or "").strip()[-_OUTPUT_TAIL:]
        stderr = (result.stderr or "").strip()[-_OUTPUT_TAIL:]

        if result.returncode == 0:
            return Receipt.success(
                adapter=self.name,
                action_id=action.id,
                output=stdout,
                duration_ms=elapsed_ms,
                return_code=0,
                metadata={"command": action.command_text, "stderr": stderr},
            )

        return Receipt.failure(
            adapter=self.name,
            action_id=action.id,
            error=stderr or f"Command exited with code {result.returncode}",
            duration_ms=elapsed_ms,
            return_code=result.returncode,
            output=stdout,
            metadata={"command": action.command_text},
        )
