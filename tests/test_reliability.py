"""
Tests for reliability — retry, rollback, recovery probes, error controller.
"""

import json
from pathlib import Path

import pytest

from desktop_installer.adapters.mock import MockAdapter
from desktop_installer.adapters.registry import AdapterRegistry
from desktop_installer.core.persistence.error_log import ErrorLog
from desktop_installer.core.reliability.errors import (
    BuildError,
    ChecksumMismatchError,
    ConfigurationError,
    DependencyError,
    DownloadError,
    ErrorController,
    ExitCode,
    InstallerError,
    InstallPermissionError,
    NetworkError,
    UserAbort,
    classify,
)
from desktop_installer.core.reliability.recovery import RecoveryProbes
from desktop_installer.core.reliability.retry import backoff_delay, retry
from desktop_installer.core.reliability.rollback import RollbackStack

# ── Retry ────────────────────────────────────────────────────────────


class TestRetry:
    def test_always_failing_runs_exactly_max_attempts(self):
        calls = []

        def always_fails():
            calls.append(1)
            raise RuntimeError("nope")

        result = retry(3, always_fails, base_delay=0, sleep=lambda s: None)
        assert not result.ok
        assert result.attempts == 3
        assert len(calls) == 3
        assert result.error == "nope"

    def test_succeeds_on_second_attempt(self):
        calls = []

        def flaky():
            calls.append(1)
            return len(calls) >= 2

        result = retry(3, flaky, base_delay=0, sleep=lambda s: None)
        assert result.ok
        assert result.attempts == 2
        assert len(calls) == 2

    def test_false_return_counts_as_failure(self):
        result = retry(2, lambda: False, base_delay=0, sleep=lambda s: None)
        assert not result.ok
        assert result.attempts == 2

    def test_value_returned(self):
        result = retry(3, lambda: 42, sleep=lambda s: None)
        assert result.value == 42

    def test_exponential_delays(self):
        delays = []
        retry(4, lambda: False, base_delay=2, sleep=delays.append)
        assert delays == [2, 4, 8]

    def test_linear_delays(self):
        delays = []
        retry(4, lambda: False, base_delay=5, backoff="linear", sleep=delays.append)
        assert delays == [5, 10, 15]

    def test_give_up_on_propagates(self):
        calls = []

        def aborted():
            calls.append(1)
            raise UserAbort("stop")

        with pytest.raises(UserAbort):
            retry(3, aborted, sleep=lambda s: None, give_up_on=(UserAbort,))
        assert len(calls) == 1

    def test_backoff_delay(self):
        assert backoff_delay(1, 5) == 5
        assert backoff_delay(3, 5) == 20
        assert backoff_delay(3, 5, "linear") == 15


# ── Rollback ─────────────────────────────────────────────────────────


def _broken():
    raise RuntimeError("broken")


class TestRollbackStack:
    def test_lifo_order(self):
        order = []
        stack = RollbackStack()
        for name in ("A", "B", "C"):
            stack.push(name, lambda n=name: order.append(n))
        result = stack.drain()
        assert order == ["C", "B", "A"]
        assert result.executed == ["C", "B", "A"]
        assert len(stack) == 0

    def test_continues_after_failure(self):
        order = []
        stack = RollbackStack()
        stack.push("A", lambda: order.append("A"))
        stack.push("B", _broken)
        stack.push("C", lambda: False)
        result = stack.drain()
        assert order == ["A"]
        assert result.failed == ["C", "B"]
        assert not result.ok

    def test_empty_drain(self):
        result = RollbackStack().drain()
        assert result.executed == []
        assert result.ok


# ── Classification ───────────────────────────────────────────────────


class TestClassify:
    @pytest.mark.parametrize("exc, code", [
        (InstallPermissionError("x"), ExitCode.PERMISSION),
        (NetworkError("x"), ExitCode.NETWORK),
        (DownloadError("x"), ExitCode.NETWORK),
        (ChecksumMismatchError("x"), ExitCode.NETWORK),
        (DependencyError("x"), ExitCode.DEPENDENCY),
        (BuildError("x"), ExitCode.BUILD),
        (ConfigurationError("x"), ExitCode.CONFIGURATION),
        (UserAbort("x"), ExitCode.USER_ABORT),
        (InstallerError("x"), ExitCode.GENERAL),
        (KeyboardInterrupt(), ExitCode.USER_ABORT),
        (PermissionError("x"), ExitCode.PERMISSION),
        (ConnectionError("x"), ExitCode.NETWORK),
        (ValueError("x"), ExitCode.GENERAL),
    ])
    def test_exit_codes(self, exc, code):
        assert classify(exc)[0] == code


# ── Recovery probes ──────────────────────────────────────────────────


def _registry(mock: MockAdapter) -> AdapterRegistry:
    reg = AdapterRegistry()
    reg.register(mock)
    return reg


class TestRecoveryProbes:
    def test_permission_cleared_by_sudo(self):
        mock = MockAdapter()
        probes = RecoveryProbes(_registry(mock))
        assert probes.attempt("permission") is True
        assert mock.call_log[0].action.command == ["sudo", "-n", "true"]

    def test_permission_not_cleared(self):
        mock = MockAdapter()
        mock.set_failure("recovery")
        assert RecoveryProbes(_registry(mock)).attempt("permission") is False

    def test_network_probe_waits_after_success(self):
        slept, connected = [], []
        probes = RecoveryProbes(
            _registry(MockAdapter()),
            probe_host="192.0.2.1",
            probe_port=53,
            retry_delay=7,
            sleep=slept.append,
            connect=lambda host, port, timeout: connected.append((host, port)),
        )
        assert probes.attempt("network") is True
        assert connected == [("192.0.2.1", 53)]
        assert slept == [7]

    def test_network_probe_failure(self):
        def refuse(host, port, timeout):
            raise OSError("unreachable")

        slept = []
        probes = RecoveryProbes(_registry(MockAdapter()), sleep=slept.append, connect=refuse)
        assert probes.attempt("network") is False
        assert slept == []

    def test_dependency_probe(self):
        with_yum = RecoveryProbes(_registry(MockAdapter()), which=lambda c: "/usr/bin/yum" if c == "yum" else None)
        without = RecoveryProbes(_registry(MockAdapter()), which=lambda c: None)
        assert with_yum.attempt("dependency") is True
        assert without.attempt("dependency") is False

    def test_unknown_category(self):
        assert RecoveryProbes(_registry(MockAdapter())).attempt("build") is False


# ── Error controller ─────────────────────────────────────────────────


class StubProbes:
    def __init__(self, clears: bool):
        self.clears = clears
        self.categories = []

    def attempt(self, category):
        self.categories.append(category)
        return self.clears


def _controller(tmp_path: Path, probes=None, enable_recovery=True) -> ErrorController:
    return ErrorController(
        ErrorLog(tmp_path / "errors.ndjson"),
        RollbackStack(),
        probes,
        enable_recovery=enable_recovery,
        retry_delay=0,
        session_id="app-20260101-000000-1",
        sleep=lambda s: None,
        environment=lambda: {"user": "tester"},
    )


def _raised(exc):
    try:
        raise exc
    except Exception as e:
        return e


class TestErrorController:
    def test_returns_mapped_code_and_writes_report(self, tmp_path: Path):
        ctl = _controller(tmp_path)
        code = ctl.handle(_raised(BuildError("builder crashed", command="builder --x")))
        assert code == ExitCode.BUILD

        lines = (tmp_path / "errors.ndjson").read_text().splitlines()
        report = json.loads(lines[0])
        assert report["exit_code"] == 5
        assert report["category"] == "build"
        assert report["command"] == "builder --x"
        assert report["session_id"] == "app-20260101-000000-1"
        assert ".py:" in report["source"]
        assert report["function"] == "_raised"
        assert report["environment"] == {"user": "tester"}

    def test_reports_are_appended(self, tmp_path: Path):
        ctl = _controller(tmp_path)
        ctl.handle(_raised(BuildError("one")))
        ctl.handle(_raised(DependencyError("two")))
        assert ctl.error_log.entry_count() == 2
        assert ctl.summary()["count"] == 2

    def test_rollback_runs_when_not_recovered(self, tmp_path: Path):
        probes = StubProbes(clears=False)
        ctl = _controller(tmp_path, probes)
        order = []
        ctl.rollback.push("A", lambda: order.append("A"))
        ctl.rollback.push("B", lambda: order.append("B"))
        ctl.handle(_raised(NetworkError("down")))
        assert probes.categories == ["network"]
        assert order == ["B", "A"]
        assert ctl.last_report.rollback_actions == ["B", "A"]
        assert ctl.last_report.recovery_attempted

    def test_rollback_skipped_when_recovered(self, tmp_path: Path):
        ctl = _controller(tmp_path, StubProbes(clears=True))
        order = []
        ctl.rollback.push("A", lambda: order.append("A"))
        code = ctl.handle(_raised(InstallPermissionError("denied")))
        assert code == ExitCode.PERMISSION
        assert order == []
        assert ctl.last_report.recovered

    def test_recovery_disabled(self, tmp_path: Path):
        probes = StubProbes(clears=True)
        ctl = _controller(tmp_path, probes, enable_recovery=False)
        ctl.handle(_raised(NetworkError("down")))
        assert probes.categories == []
        assert not ctl.last_report.recovery_attempted

    def test_user_abort_skips_recovery_but_rolls_back(self, tmp_path: Path):
        probes = StubProbes(clears=True)
        ctl = _controller(tmp_path, probes)
        order = []
        ctl.rollback.push("A", lambda: order.append("A"))
        code = ctl.handle(UserAbort("Interrupted by user"))
        assert code == ExitCode.USER_ABORT
        assert probes.categories == []
        assert order == ["A"]

    def test_retry_uses_doubling_delay(self, tmp_path: Path):
        delays = []
        ctl = ErrorController(
            ErrorLog(tmp_path / "e.ndjson"), RollbackStack(),
            max_retries=3, retry_delay=1, sleep=delays.append,
        )
        result = ctl.retry(lambda: False, description="flaky thing")
        assert not result.ok
        assert result.attempts == 3
        assert delays == [1, 2]
