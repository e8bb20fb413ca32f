"""
Install context — the explicit bundle of collaborators for one run.

Built once by the ``run_action`` use case and handed to the
orchestrator. Nothing in the engine reaches for module-level state;
tests build their own context with mock adapters and injected
primitives.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from desktop_installer.adapters.registry import AdapterRegistry
from desktop_installer.core.config.loader import ConfigStore
from desktop_installer.core.reliability.errors import ErrorController
from desktop_installer.core.reliability.rollback import RollbackStack
from desktop_installer.core.services.downloader import Downloader
from desktop_installer.core.services.system_detection import SystemValidator


def decline_prompt(prompt: str) -> bool:
    return False


@dataclass
class InstallContext:
    """Everything the orchestrator needs, injected."""

    config: ConfigStore
    registry: AdapterRegistry
    downloader: Downloader
    validator: SystemValidator
    errors: ErrorController
    rollback: RollbackStack

    dry_run: bool = False
    keep_temp: bool = False
    assume_yes: bool = False

    # Interactive yes/no prompt (CLI: click.confirm)
    confirm: Callable[[str], bool] = decline_prompt

    # Values produced by one phase and consumed by a later one
    artifacts: dict[str, Any] = field(default_factory=dict)
