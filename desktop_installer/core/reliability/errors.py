"""
Error taxonomy and the error controller.

Components raise ``InstallerError`` subclasses. The process boundary
catches once and hands the exception to ``ErrorController.handle``,
which:

    1. classifies it into an exit code and category,
    2. runs the category's recovery probe (unless recovery is off or
       the user aborted),
    3. drains the rollback stack when recovery did not clear the
       condition,
    4. appends an ErrorReport to the error log,

and returns the exit code for the boundary to exit with.
"""

from __future__ import annotations

import getpass
import logging
import os
import platform
import socket
import time
import traceback
import urllib.error
from collections.abc import Callable
from enum import IntEnum
from typing import Any

from desktop_installer.core.models.reports import ErrorReport
from desktop_installer.core.persistence.error_log import ErrorLog
from desktop_installer.core.reliability.recovery import RecoveryProbes
from desktop_installer.core.reliability.retry import RetryResult, retry
from desktop_installer.core.reliability.rollback import RollbackStack

logger = logging.getLogger(__name__)


class ExitCode(IntEnum):
    SUCCESS = 0
    GENERAL = 1
    PERMISSION = 2
    NETWORK = 3
    DEPENDENCY = 4
    BUILD = 5
    CONFIGURATION = 6
    USER_ABORT = 130


# ── Exceptions ──────────────────────────────────────────────────


class InstallerError(Exception):
    """Base of every failure the installer reports with an exit code."""

    exit_code: ExitCode = ExitCode.GENERAL
    category: str = "general"

    def __init__(self, message: str, *, command: str = "", context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.command = command
        self.context = context or {}


class InstallPermissionError(InstallerError):
    exit_code = ExitCode.PERMISSION
    category = "permission"


class NetworkError(InstallerError):
    exit_code = ExitCode.NETWORK
    category = "network"


class DownloadError(NetworkError):
    """A transfer failed after all attempts, or was refused."""


class ChecksumMismatchError(DownloadError):
    """Downloaded bytes do not match the expected digest."""


class DependencyError(InstallerError):
    exit_code = ExitCode.DEPENDENCY
    category = "dependency"


class BuildError(InstallerError):
    exit_code = ExitCode.BUILD
    category = "build"


class ConfigurationError(InstallerError):
    exit_code = ExitCode.CONFIGURATION
    category = "configuration"


class UserAbort(InstallerError):
    """Interrupted by the user (SIGINT/SIGTERM) or a declined prompt."""

    exit_code = ExitCode.USER_ABORT
    category = "user_abort"


def classify(exc: BaseException) -> tuple[ExitCode, str]:
    """Map any exception onto (exit code, category)."""
    if isinstance(exc, InstallerError):
        return exc.exit_code, exc.category
    if isinstance(exc, KeyboardInterrupt):
        return ExitCode.USER_ABORT, UserAbort.category
    if isinstance(exc, PermissionError):
        return ExitCode.PERMISSION, InstallPermissionError.category
    if isinstance(exc, (urllib.error.URLError, ConnectionError, socket.timeout, socket.gaierror)):
        return ExitCode.NETWORK, NetworkError.category
    return ExitCode.GENERAL, InstallerError.category


def environment_snapshot() -> dict[str, str]:
    """Where the failure happened: cwd, user, shell, PATH, OS facts."""
    try:
        user = getpass.getuser()
    except (KeyError, OSError):
        user = "unknown"

    try:
        distribution = platform.freedesktop_os_release().get("PRETTY_NAME", "unknown")
    except OSError:
        distribution = "unknown"

    try:
        cwd = os.getcwd()
    except OSError:
        cwd = "unknown"

    return {
        "cwd": cwd,
        "user": user,
        "shell": os.environ.get("SHELL", "unknown"),
        "path": os.environ.get("PATH", ""),
        "os": platform.system(),
        "kernel": platform.release(),
        "architecture": platform.machine(),
        "distribution": distribution,
    }


def _raise_site(exc: BaseException) -> tuple[str, str]:
    frames = traceback.extract_tb(exc.__traceback__) if exc.__traceback__ else []
    if not frames:
        return "", ""
    last = frames[-1]
    return f"{last.filename}:{last.lineno}", last.name


# ── Controller ──────────────────────────────────────────────────


class ErrorController:
    """Report → recover → roll back, once per fatal error.

    Args:
        error_log: Append-only report sink.
        rollback: The session's compensation stack.
        probes: Recovery probes; None disables recovery entirely.
        enable_recovery: Config switch (``installer.enable_recovery``).
        max_retries: Default attempt bound for ``retry``.
        retry_delay: Base delay for ``retry``, doubled per attempt.
    """

    def __init__(
        self,
        error_log: ErrorLog,
        rollback: RollbackStack,
        probes: RecoveryProbes | None = None,
        enable_recovery: bool = True,
        max_retries: int = 3,
        retry_delay: float = 5.0,
        session_id: str = "",
        sleep: Callable[[float], None] = time.sleep,
        environment: Callable[[], dict[str, str]] = environment_snapshot,
    ):
        self.error_log = error_log
        self.rollback = rollback
        self.probes = probes
        self.enable_recovery = enable_recovery
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.session_id = session_id
        self._sleep = sleep
        self._environment = environment
        self.last_report: ErrorReport | None = None

    def handle(self, exc: BaseException) -> ExitCode:
        """Process a fatal error and return the exit code to use."""
        code, category = classify(exc)
        message = str(exc) or exc.__class__.__name__
        source, function = _raise_site(exc)

        report = ErrorReport(
            session_id=self.session_id,
            exit_code=int(code),
            category=category,
            message=message,
            exception_type=exc.__class__.__name__,
            command=getattr(exc, "command", ""),
            source=source,
            function=function,
            environment=self._environment(),
            context=getattr(exc, "context", {}) or {},
        )

        logger.error("Error %d (%s): %s", int(code), category, message)
        if report.command:
            logger.error("Failed command: %s", report.command)
        if source:
            logger.debug("Raised at %s in %s()", source, function)

        if code == ExitCode.USER_ABORT:
            logger.warning("Installation interrupted by user")
        elif self.enable_recovery and self.probes is not None:
            report.recovery_attempted = True
            report.recovered = self.probes.attempt(category)

        if report.recovered:
            logger.info("Condition cleared by recovery; rollback skipped")
        else:
            result = self.rollback.drain()
            report.rollback_actions = result.executed
            report.rollback_failures = result.failed

        self.error_log.append(report)
        self.last_report = report
        return code

    def retry(
        self,
        operation: Callable[[], Any],
        max_attempts: int | None = None,
        description: str = "",
    ) -> RetryResult:
        """Retry with exponential backoff from the configured delay."""
        return retry(
            max_attempts or self.max_retries,
            operation,
            base_delay=self.retry_delay,
            backoff="exponential",
            description=description,
            sleep=self._sleep,
            give_up_on=(UserAbort,),
        )

    def summary(self) -> dict[str, Any]:
        """Count and location of recorded error reports."""
        count = self.error_log.entry_count()
        if count:
            logger.info("Error summary: %d errors recorded in %s", count, self.error_log.path)
        return {"count": count, "path": str(self.error_log.path)}
