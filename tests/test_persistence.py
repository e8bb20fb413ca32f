"""
Tests for persistence — error log (NDJSON) and session ledger file.
"""

import json
from pathlib import Path

from desktop_installer.core.models.reports import ErrorReport
from desktop_installer.core.models.session import Phase, PhaseStatus, SessionLedger
from desktop_installer.core.persistence.error_log import ErrorLog
from desktop_installer.core.persistence.session_file import (
    load_session,
    save_session,
    session_path,
)


class TestErrorLog:
    def test_append_creates_file_and_parents(self, tmp_path: Path):
        log = ErrorLog(tmp_path / "deep" / "errors.ndjson")
        assert log.append(ErrorReport(message="first", exit_code=3, category="network"))
        assert log.path.is_file()

    def test_never_overwrites(self, tmp_path: Path):
        log = ErrorLog(tmp_path / "errors.ndjson")
        log.append(ErrorReport(message="first"))
        log.append(ErrorReport(message="second"))
        reports = log.read_all()
        assert [r.message for r in reports] == ["first", "second"]
        assert log.entry_count() == 2

    def test_one_json_object_per_line(self, tmp_path: Path):
        log = ErrorLog(tmp_path / "errors.ndjson")
        log.append(ErrorReport(message="x", environment={"user": "u"}))
        line = log.path.read_text().splitlines()[0]
        assert json.loads(line)["environment"]["user"] == "u"

    def test_corrupt_lines_skipped(self, tmp_path: Path):
        path = tmp_path / "errors.ndjson"
        log = ErrorLog(path)
        log.append(ErrorReport(message="ok"))
        with path.open("a") as f:
            f.write("{broken\n")
        log.append(ErrorReport(message="also ok"))
        assert [r.message for r in log.read_all()] == ["ok", "also ok"]

    def test_read_recent(self, tmp_path: Path):
        log = ErrorLog(tmp_path / "errors.ndjson")
        for i in range(5):
            log.append(ErrorReport(message=str(i)))
        assert [r.message for r in log.read_recent(2)] == ["3", "4"]

    def test_missing_log(self, tmp_path: Path):
        log = ErrorLog(tmp_path / "none.ndjson")
        assert log.read_all() == []
        assert log.entry_count() == 0


class TestSessionFile:
    def _ledger(self) -> SessionLedger:
        ledger = SessionLedger(session_id="app-20260101-120000-42", action="install")
        ledger.plan([(Phase.VALIDATE, False), (Phase.OPTIMIZE, True)])
        ledger.mark_done(Phase.VALIDATE, PhaseStatus.SUCCESS, 12)
        ledger.finish(0)
        return ledger

    def test_save_and_load(self, tmp_path: Path):
        path = session_path(tmp_path)
        save_session(self._ledger(), path)
        loaded = load_session(path)
        assert loaded is not None
        assert loaded.session_id == "app-20260101-120000-42"
        assert loaded.status_of(Phase.VALIDATE) == PhaseStatus.SUCCESS
        assert loaded.status_of(Phase.OPTIMIZE) == PhaseStatus.PENDING
        assert loaded.exit_code == 0

    def test_no_temp_files_left(self, tmp_path: Path):
        path = session_path(tmp_path)
        save_session(self._ledger(), path)
        save_session(self._ledger(), path)
        assert [p.name for p in tmp_path.iterdir()] == ["last_session.json"]

    def test_missing_or_corrupt(self, tmp_path: Path):
        path = tmp_path / "last_session.json"
        assert load_session(path) is None
        path.write_text("not json")
        assert load_session(path) is None


class TestLedger:
    def test_failed_phases(self):
        ledger = SessionLedger(session_id="s")
        ledger.plan([(Phase.DOWNLOAD, False), (Phase.BUILD, False)])
        ledger.mark_running(Phase.DOWNLOAD)
        ledger.mark_done(Phase.DOWNLOAD, PhaseStatus.FAILED, message="boom")
        assert ledger.failed_phases == [Phase.DOWNLOAD]
        assert ledger.record(Phase.DOWNLOAD).message == "boom"

    def test_unplanned_phase_added(self):
        ledger = SessionLedger(session_id="s")
        ledger.mark_running(Phase.INTEGRATE)
        assert ledger.status_of(Phase.INTEGRATE) == PhaseStatus.RUNNING
