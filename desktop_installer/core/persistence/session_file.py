"""
Session file — atomic read/write of the last session ledger.

The ledger of the most recent run is stored as JSON in
``<state_dir>/last_session.json``. Writes go to a temp file in the same
directory and are then renamed over the target, so a crash mid-write
never leaves a truncated file behind.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from desktop_installer.core.models.session import SessionLedger

logger = logging.getLogger(__name__)

DEFAULT_SESSION_FILE = "last_session.json"


def session_path(state_dir: Path) -> Path:
    """Location of the persisted ledger inside a state directory."""
    return Path(state_dir).expanduser() / DEFAULT_SESSION_FILE


def load_session(path: Path) -> SessionLedger | None:
    """Load a persisted ledger. Missing or corrupt files give None."""
    if not path.is_file():
        return None

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return SessionLedger.model_validate(data)
    except (OSError, ValueError) as e:
        logger.warning("Cannot load session ledger from %s: %s", path, e)
        return None


def save_session(ledger: SessionLedger, path: Path) -> None:
    """Save a ledger atomically (temp file, then rename)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    content = json.dumps(ledger.model_dump(mode="json"), indent=2, ensure_ascii=False) + "\n"

    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".session_", suffix=".tmp")
    os.close(fd)
    tmp = Path(tmp_path)
    try:
        tmp.write_text(content, encoding="utf-8")
        tmp.replace(path)
        logger.debug("Session ledger saved to %s", path)
    except OSError:
        tmp.unlink(missing_ok=True)
        logger.error("Failed to save session ledger to %s", path)
        raise
