"""
Error log — append-only record of fatal failures.

Every error the controller handles writes one ErrorReport as an NDJSON
line. Earlier runs' reports are never modified or deleted, so the file
is the installer's failure history across sessions.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from desktop_installer.core.models.reports import ErrorReport

logger = logging.getLogger(__name__)

DEFAULT_ERROR_LOG = Path("~/.local/state/desktop-installer/errors.ndjson")


class ErrorLog:
    """Append-only error report writer.

    Each call to append() adds a single JSON line. The file and its
    parent directory are created on first write.
    """

    def __init__(self, path: Path | None = None):
        self._path = Path(path or DEFAULT_ERROR_LOG).expanduser()

    @property
    def path(self) -> Path:
        return self._path

    def append(self, report: ErrorReport) -> bool:
        """Append a report. Returns False if the write failed."""
        line = json.dumps(report.model_dump(mode="json"), ensure_ascii=False) + "\n"
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as f:
                f.write(line)
        except OSError as e:
            logger.error("Failed to write error report to %s: %s", self._path, e)
            return False
        logger.debug("Error report written: %s/%s", report.category, report.exit_code)
        return True

    def read_all(self) -> list[ErrorReport]:
        """All reports, oldest first. Corrupt lines are skipped."""
        if not self._path.is_file():
            return []

        reports = []
        try:
            with self._path.open("r", encoding="utf-8") as f:
                for line_num, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        reports.append(ErrorReport.model_validate(json.loads(line)))
                    except ValueError as e:
                        logger.warning("Skipping corrupt error report at line %d: %s", line_num, e)
        except OSError as e:
            logger.error("Failed to read error log: %s", e)

        return reports

    def read_recent(self, n: int = 10) -> list[ErrorReport]:
        return self.read_all()[-n:]

    def entry_count(self) -> int:
        """Count reports without parsing them."""
        if not self._path.is_file():
            return 0
        try:
            with self._path.open("r", encoding="utf-8") as f:
                return sum(1 for line in f if line.strip())
        except OSError:
            return 0
