"""
Rollback stack — compensating actions for state-mutating steps.

A compensation is pushed immediately before the step it undoes. On a
fatal error the stack is drained last-in first-out. Every compensation
runs even if an earlier one failed; failures are logged and reported.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class RollbackStep:
    """One named compensation."""

    name: str
    action: Callable[[], Any]


@dataclass
class RollbackResult:
    executed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


class RollbackStack:
    """LIFO list of compensations for the current session."""

    def __init__(self) -> None:
        self._steps: list[RollbackStep] = []

    def __len__(self) -> int:
        return len(self._steps)

    @property
    def names(self) -> list[str]:
        """Registered compensations in registration order."""
        return [s.name for s in self._steps]

    def push(self, name: str, action: Callable[[], Any]) -> None:
        """Register a compensation. A False return counts as failure."""
        self._steps.append(RollbackStep(name=name, action=action))
        logger.debug("Registered rollback action: %s", name)

    def clear(self) -> None:
        self._steps.clear()

    def drain(self) -> RollbackResult:
        """Run every compensation, newest first, and empty the stack."""
        result = RollbackResult()
        if not self._steps:
            logger.info("No rollback actions registered")
            return result

        logger.info("Executing %d rollback actions", len(self._steps))
        while self._steps:
            step = self._steps.pop()
            logger.info("Rollback: %s", step.name)
            result.executed.append(step.name)
            try:
                outcome = step.action()
            except Exception as e:
                logger.error("Rollback action failed: %s: %s", step.name, e)
                result.failed.append(step.name)
                continue
            if outcome is False:
                logger.error("Rollback action failed: %s", step.name)
                result.failed.append(step.name)

        if result.failed:
            logger.warning("%d rollback actions failed", len(result.failed))
        else:
            logger.info("Rollback completed")
        return result
