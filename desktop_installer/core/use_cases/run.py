"""
Run use case — one install/update/uninstall/check from start to exit code.

This is the composition root: it wires the adapter registry, downloader,
validator, rollback stack and error controller into an InstallContext,
opens a Session and hands both to the Orchestrator. It is also the
single place where failures are caught: anything escaping the
orchestrator goes through ``ErrorController.handle`` and becomes an
exit code. SIGTERM is turned into the same user-abort path as Ctrl-C.
"""

from __future__ import annotations

import logging
import signal
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

from desktop_installer.adapters.registry import AdapterRegistry
from desktop_installer.core.config.loader import ConfigStore
from desktop_installer.core.context import InstallContext, decline_prompt
from desktop_installer.core.engine.orchestrator import Orchestrator
from desktop_installer.core.engine.session import Session
from desktop_installer.core.models.session import SessionLedger
from desktop_installer.core.persistence.error_log import ErrorLog
from desktop_installer.core.reliability.errors import ErrorController, ExitCode, UserAbort
from desktop_installer.core.reliability.recovery import RecoveryProbes
from desktop_installer.core.reliability.rollback import RollbackStack
from desktop_installer.core.services.downloader import Downloader
from desktop_installer.core.services.system_detection import SystemValidator

logger = logging.getLogger(__name__)


@dataclass
class RunResult:
    """Outcome of one action."""

    action: str
    exit_code: ExitCode = ExitCode.SUCCESS
    session_id: str = ""
    log_file: str = ""
    error_log: str = ""
    temp_dir: str = ""
    kept_temp: bool = False
    error: str | None = None
    ledger: SessionLedger | None = None

    @property
    def ok(self) -> bool:
        return self.exit_code == ExitCode.SUCCESS

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "action": self.action,
            "exit_code": int(self.exit_code),
            "session_id": self.session_id,
            "log_file": self.log_file,
            "error_log": self.error_log,
        }
        if self.kept_temp:
            result["temp_dir"] = self.temp_dir
        if self.error:
            result["error"] = self.error
        if self.ledger is not None:
            result["phases"] = [
                {"phase": str(r.phase), "status": str(r.status), "message": r.message}
                for r in self.ledger.phases
            ]
        return result


def build_error_controller(
    config: ConfigStore,
    registry: AdapterRegistry,
    rollback: RollbackStack,
    sleep: Callable[[float], None] = time.sleep,
) -> ErrorController:
    """Error controller configured from the ``installer`` section."""
    retry_delay = config.get_float("installer.retry_delay", 5.0)
    probes = RecoveryProbes(
        registry,
        probe_host=str(config.get("installer.network_probe_host", "8.8.8.8")),
        probe_port=config.get_int("installer.network_probe_port", 53),
        retry_delay=retry_delay,
        sleep=sleep,
    )
    return ErrorController(
        ErrorLog(config.get_path("installer.error_log", "~/.local/state/desktop-installer/errors.ndjson")),
        rollback,
        probes,
        enable_recovery=config.get_bool("installer.enable_recovery", True),
        max_retries=config.get_int("installer.max_retries", 3),
        retry_delay=retry_delay,
        sleep=sleep,
    )


@contextmanager
def _sigterm_as_interrupt() -> Iterator[None]:
    """Deliver SIGTERM as KeyboardInterrupt while the block runs."""
    def _raise(signum, frame):
        raise KeyboardInterrupt(f"signal {signum}")

    try:
        previous = signal.signal(signal.SIGTERM, _raise)
    except ValueError:
        # Not the main thread: leave signal handling alone
        yield
        return
    try:
        yield
    finally:
        signal.signal(signal.SIGTERM, previous)


def run_action(
    action: str,
    config: ConfigStore,
    *,
    dry_run: bool = False,
    keep_temp: bool | None = None,
    assume_yes: bool = False,
    confirm: Callable[[str], bool] = decline_prompt,
    registry: AdapterRegistry | None = None,
    downloader: Downloader | None = None,
    validator: SystemValidator | None = None,
    attach_log: bool = True,
    sleep: Callable[[float], None] = time.sleep,
) -> RunResult:
    """Run one action and return its exit code and session details.

    Args:
        action: install, update, uninstall or check.
        config: The session configuration.
        dry_run: Suppress every mutating collaborator call.
        keep_temp: Keep the session temp directory
            (default: ``build.keep_temp_files``).
        assume_yes: Answer interactive prompts with yes.
        confirm: Interactive yes/no prompt.
        registry, downloader, validator: Injected for tests.
        attach_log: Write a per-session log file.
        sleep: Backoff sleep for recovery probes.
    """
    if keep_temp is None:
        keep_temp = config.get_bool("build.keep_temp_files", False)

    if registry is None:
        registry = AdapterRegistry.default(dry_run=dry_run)
    registry.dry_run = dry_run

    log_dir = config.get_path("installer.log_directory", "~/.local/state/desktop-installer")
    session = Session(
        action,
        str(config.get("application.name", "desktop-app")),
        config.get_path("build.temp_directory", "/tmp/desktop-installer"),
        log_dir,
        state_dir=log_dir,
        keep_temp=keep_temp,
        dry_run=dry_run,
        log_format=str(config.get("installer.log_format", "standard")),
        attach_log=attach_log,
    )
    registry.workdir = str(session.temp_dir)

    rollback = RollbackStack()
    errors = build_error_controller(config, registry, rollback, sleep=sleep)
    errors.session_id = session.session_id

    ctx = InstallContext(
        config=config,
        registry=registry,
        downloader=downloader or Downloader.from_config(config),
        validator=validator or SystemValidator(registry),
        errors=errors,
        rollback=rollback,
        dry_run=dry_run,
        keep_temp=keep_temp,
        assume_yes=assume_yes,
        confirm=confirm,
    )

    result = RunResult(
        action=action,
        session_id=session.session_id,
        log_file=str(session.log_file) if attach_log else "",
        error_log=str(errors.error_log.path),
        temp_dir=str(session.temp_dir),
        kept_temp=keep_temp,
        ledger=session.ledger,
    )

    with _sigterm_as_interrupt():
        try:
            with session:
                try:
                    code = Orchestrator(ctx, session).run()
                except KeyboardInterrupt:
                    result.error = "Interrupted by user"
                    code = errors.handle(UserAbort(result.error))
                except Exception as e:
                    result.error = str(e) or e.__class__.__name__
                    code = errors.handle(e)
                session.close(int(code))
        except OSError as e:
            # Session setup (temp directory) failed before any phase ran
            result.error = f"Cannot set up session: {e}"
            code = errors.handle(e)
        except KeyboardInterrupt:
            result.error = "Interrupted by user"
            code = errors.handle(UserAbort(result.error))

    result.exit_code = ExitCode(code)
    if result.ok:
        logger.debug("Session %s finished", session.session_id)
    else:
        errors.summary()
    return result
