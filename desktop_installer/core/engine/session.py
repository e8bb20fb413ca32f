"""
Session — identity, temp directory and log sink of one run.

Used as a context manager. Entering creates the exclusive temp
directory and attaches the session log file; leaving runs cleanup
exactly once, on every exit path:

    - the temp directory is removed unless keep-temp is set, in which
      case its path is logged
    - the ledger is persisted (when a state directory is configured)
    - the session log handler is detached
"""

from __future__ import annotations

import logging
import os
import shutil
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

from desktop_installer.core.models.session import SessionLedger
from desktop_installer.core.observability.logging_config import (
    attach_file_handler,
    detach_handler,
)
from desktop_installer.core.persistence.session_file import save_session, session_path

logger = logging.getLogger(__name__)


def make_session_id(app_name: str, now: datetime | None = None, pid: int | None = None) -> str:
    """``<app>-<YYYYmmdd-HHMMSS>-<pid>``"""
    stamp = (now or datetime.now()).strftime("%Y%m%d-%H%M%S")
    return f"{app_name}-{stamp}-{pid if pid is not None else os.getpid()}"


class Session:
    """One installer run.

    Args:
        action: install, update, uninstall or check.
        app_name: Prefix of the session id.
        temp_root: ``build.temp_directory``; the session directory is
            ``<temp_root>-<session_id>``.
        log_dir: Where the session log file goes.
        state_dir: Where the final ledger is saved (None: not saved).
        keep_temp: Retain the temp directory after the run.
    """

    def __init__(
        self,
        action: str,
        app_name: str,
        temp_root: Path,
        log_dir: Path,
        *,
        state_dir: Path | None = None,
        keep_temp: bool = False,
        dry_run: bool = False,
        log_format: str = "standard",
        attach_log: bool = True,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.action = action
        self.session_id = make_session_id(app_name, clock())
        self.temp_dir = Path(f"{Path(temp_root).expanduser()}-{self.session_id}")
        self.log_file = Path(log_dir).expanduser() / f"{self.session_id}.log"
        self.state_dir = Path(state_dir).expanduser() if state_dir is not None else None
        self.keep_temp = keep_temp
        self.log_format = log_format
        self._attach_log = attach_log
        self._handler: logging.Handler | None = None
        self._closed = False

        self.ledger = SessionLedger(
            session_id=self.session_id,
            action=action,
            dry_run=dry_run,
            temp_dir=str(self.temp_dir),
            log_file=str(self.log_file) if attach_log else "",
        )

    def __enter__(self) -> Session:
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.close()
        return False

    def open(self) -> None:
        self.temp_dir.mkdir(parents=True, exist_ok=False)

        if self._attach_log:
            try:
                self._handler = attach_file_handler(str(self.log_file), "DEBUG", self.log_format)
            except OSError as e:
                logger.warning("Cannot open session log %s: %s", self.log_file, e)
                self.ledger.log_file = ""

        logger.info("Session ID: %s", self.session_id)
        logger.info("Temporary directory: %s", self.temp_dir)

    def close(self, exit_code: int | None = None) -> None:
        """Clean up. Safe to call more than once; only the first call acts."""
        if self._closed:
            return
        self._closed = True

        if exit_code is not None:
            self.ledger.finish(exit_code)

        if self.keep_temp:
            logger.info("Temporary files preserved at: %s", self.temp_dir)
        elif self.temp_dir.exists():
            logger.info("Cleaning up temporary directory: %s", self.temp_dir)
            try:
                shutil.rmtree(self.temp_dir)
            except OSError as e:
                logger.warning("Failed to remove temporary directory %s: %s", self.temp_dir, e)

        if self.state_dir is not None:
            try:
                save_session(self.ledger, session_path(self.state_dir))
            except OSError as e:
                logger.warning("Cannot persist session ledger: %s", e)

        if self._handler is not None:
            detach_handler(self._handler)
            self._handler = None

    @property
    def closed(self) -> bool:
        return self._closed
