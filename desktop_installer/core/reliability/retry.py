"""
Retry with backoff — bounded re-invocation of a failing operation.

An attempt fails when the operation raises an ``Exception`` or returns
``False``. Any other return value is success and is handed back in
the result.

Backoff between attempts:
    exponential  base, 2×base, 4×base, ...
    linear       base, 2×base, 3×base, ...

No delay follows the final attempt. ``KeyboardInterrupt`` and the
exception types listed in ``give_up_on`` propagate immediately.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Literal

logger = logging.getLogger(__name__)

Backoff = Literal["exponential", "linear"]


@dataclass
class RetryResult:
    """Outcome of a retried operation."""

    ok: bool
    attempts: int
    value: Any = None
    error: str = ""


def backoff_delay(attempt: int, base_delay: float, backoff: Backoff = "exponential") -> float:
    """Delay after failed attempt number ``attempt`` (1-based)."""
    if backoff == "linear":
        return base_delay * attempt
    return base_delay * (2 ** (attempt - 1))


def retry(
    max_attempts: int,
    operation: Callable[[], Any],
    base_delay: float = 1.0,
    *,
    backoff: Backoff = "exponential",
    description: str = "",
    sleep: Callable[[float], None] = time.sleep,
    give_up_on: tuple[type[BaseException], ...] = (),
) -> RetryResult:
    """Invoke ``operation`` up to ``max_attempts`` times.

    Args:
        max_attempts: Upper bound on invocations (at least 1).
        operation: Zero-argument callable.
        base_delay: Seconds before the second attempt.
        backoff: ``exponential`` (doubling) or ``linear``.
        description: Name used in log lines.
        sleep: Injectable for tests.
        give_up_on: Exception types that are never retried.

    Returns:
        RetryResult with the number of invocations actually made.
    """
    max_attempts = max(1, max_attempts)
    label = description or getattr(operation, "__name__", "operation")
    last_error = ""

    for attempt in range(1, max_attempts + 1):
        logger.info("Attempting %s (attempt %d/%d)", label, attempt, max_attempts)
        try:
            value = operation()
        except give_up_on:
            raise
        except Exception as e:
            last_error = str(e) or e.__class__.__name__
            logger.warning("%s failed on attempt %d: %s", label, attempt, last_error)
        else:
            if value is not False:
                logger.info("%s succeeded on attempt %d", label, attempt)
                return RetryResult(ok=True, attempts=attempt, value=value)
            last_error = "operation returned False"
            logger.warning("%s failed on attempt %d", label, attempt)

        if attempt < max_attempts:
            delay = backoff_delay(attempt, base_delay, backoff)
            logger.info("Waiting %.1fs before retry...", delay)
            sleep(delay)

    logger.error("%s failed after %d attempts", label, max_attempts)
    return RetryResult(ok=False, attempts=max_attempts, error=last_error)
