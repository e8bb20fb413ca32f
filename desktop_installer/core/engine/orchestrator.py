"""
Phase orchestrator — runs the ordered phase list of one action.

Flow:
    plan phases → for each: mark running → handler → mark done

A required phase that fails raises, which aborts the remaining phases;
the exception travels up to ``run_action`` where the error controller
reports, recovers and rolls back. An optional phase that fails is
logged as a warning and the run continues.

Every external call goes through the adapter registry as an argv
Action, so dry-run suppression and test doubles apply uniformly.
"""

from __future__ import annotations

import logging
import shutil
import time
from collections.abc import Callable
from pathlib import Path

from desktop_installer.core.context import InstallContext
from desktop_installer.core.engine.session import Session
from desktop_installer.core.models.action import Action, Receipt
from desktop_installer.core.models.session import Phase, PhaseStatus
from desktop_installer.core.reliability.errors import (
    BuildError,
    ConfigurationError,
    DependencyError,
    ExitCode,
    InstallerError,
)
from desktop_installer.core.reliability.recovery import SUPPORTED_PACKAGE_MANAGERS

logger = logging.getLogger(__name__)

PhasePlan = list[tuple[Phase, bool]]  # (phase, optional)

_INSTALL_PATH: PhasePlan = [
    (Phase.DOWNLOAD, False),
    (Phase.BUILD, False),
    (Phase.OPTIMIZE, True),
    (Phase.PACKAGE_INSTALL, False),
    (Phase.INTEGRATE, True),
]

PHASE_PLANS: dict[str, PhasePlan] = {
    "install": [(Phase.VALIDATE, False), (Phase.INSTALL_DEPENDENCIES, False), *_INSTALL_PATH],
    "update": [(Phase.VALIDATE, False), (Phase.INSTALL_DEPENDENCIES, False), *_INSTALL_PATH],
    "uninstall": [
        (Phase.REMOVE_PACKAGE, False),
        (Phase.REMOVE_CONFIG, True),
        (Phase.INTEGRATION_CLEANUP, True),
    ],
    "check": [(Phase.VALIDATE, False), (Phase.EXISTENCE_PROBE, False)],
}

ACTIONS = tuple(PHASE_PLANS)

PhaseOutcome = tuple[PhaseStatus, str]


def _done(message: str = "") -> PhaseOutcome:
    return PhaseStatus.SUCCESS, message


def _skipped(message: str) -> PhaseOutcome:
    return PhaseStatus.SKIPPED, message


class Orchestrator:
    """Sequencer for one session's action."""

    def __init__(
        self,
        ctx: InstallContext,
        session: Session,
        which: Callable[[str], str | None] = shutil.which,
    ):
        self.ctx = ctx
        self.session = session
        self._which = which
        self._handlers: dict[Phase, Callable[[], PhaseOutcome]] = {
            Phase.VALIDATE: self._validate,
            Phase.INSTALL_DEPENDENCIES: self._install_dependencies,
            Phase.DOWNLOAD: self._download,
            Phase.BUILD: self._build,
            Phase.OPTIMIZE: self._optimize,
            Phase.PACKAGE_INSTALL: self._package_install,
            Phase.INTEGRATE: self._integrate,
            Phase.REMOVE_PACKAGE: self._remove_package,
            Phase.REMOVE_CONFIG: self._remove_config,
            Phase.INTEGRATION_CLEANUP: self._integration_cleanup,
            Phase.EXISTENCE_PROBE: self._existence_probe,
        }

    @property
    def config(self):
        return self.ctx.config

    @property
    def package_name(self) -> str:
        return str(self.config.get("application.package_name", "claude-desktop"))

    # ── Driver ──────────────────────────────────────────────────

    def run(self) -> ExitCode:
        """Run every phase of the session's action.

        Returns:
            SUCCESS, or for ``check`` GENERAL when the application is
            absent. Failures of required phases raise.
        """
        action = self.session.action
        plan = PHASE_PLANS.get(action)
        if plan is None:
            raise ConfigurationError(f"Unknown action: {action} (choose from {', '.join(ACTIONS)})")

        ledger = self.session.ledger
        ledger.plan(plan)
        logger.info(
            "%s installer v%s: %s%s",
            self.config.get("application.name", self.package_name),
            self.config.get("installer.version", ""),
            action,
            " (dry-run)" if self.ctx.dry_run else "",
        )

        if action == "update":
            self._log_installed_version()

        for phase, optional in plan:
            self._run_phase(phase, optional)

        if action == "check":
            if self.ctx.artifacts.get("present"):
                logger.info("%s is installed", self.package_name)
                return ExitCode.SUCCESS
            logger.info("%s is not installed", self.package_name)
            return ExitCode.GENERAL

        logger.info("%s completed successfully", action.capitalize())
        return ExitCode.SUCCESS

    def _run_phase(self, phase: Phase, optional: bool) -> None:
        ledger = self.session.ledger
        ledger.mark_running(phase)
        logger.info("── %s: start", phase)
        start = time.monotonic()

        try:
            status, message = self._handlers[phase]()
        except Exception as e:
            elapsed = int((time.monotonic() - start) * 1000)
            ledger.mark_done(phase, PhaseStatus.FAILED, elapsed, str(e))
            if optional:
                logger.warning("── %s: failed, continuing (optional): %s", phase, e)
                return
            logger.error("── %s: error: %s", phase, e)
            raise
        except KeyboardInterrupt:
            elapsed = int((time.monotonic() - start) * 1000)
            ledger.mark_done(phase, PhaseStatus.FAILED, elapsed, "interrupted")
            raise

        elapsed = int((time.monotonic() - start) * 1000)
        ledger.mark_done(phase, status, elapsed, message)
        suffix = f" ({message})" if message else ""
        logger.info("── %s: %s in %dms%s", phase, status, elapsed, suffix)

    # ── Helpers ─────────────────────────────────────────────────

    def _run(
        self,
        action_id: str,
        command: list[str],
        description: str = "",
        *,
        needs_sudo: bool = False,
        mutating: bool = True,
        timeout: int = 600,
        cwd: Path | None = None,
        env: dict[str, str] | None = None,
    ) -> Receipt:
        receipt = self.ctx.registry.execute_action(Action(
            id=action_id,
            description=description,
            command=command,
            needs_sudo=needs_sudo,
            mutating=mutating,
            timeout=timeout,
            cwd=str(cwd) if cwd else None,
            env=env or {},
        ))
        for line in receipt.output.splitlines():
            logger.debug("[%s] %s", action_id, line)
        for line in str(receipt.metadata.get("stderr", "")).splitlines():
            logger.debug("[%s] stderr: %s", action_id, line)
        if receipt.failed:
            logger.debug("%s failed: %s", action_id, receipt.error)
        return receipt

    def _is_installed(self, package: str) -> bool:
        receipt = self._run(
            f"probe:rpm-q:{package}",
            ["rpm", "-q", package],
            f"check whether {package} is installed",
            mutating=False,
            timeout=60,
        )
        return receipt.ok

    def _package_manager(self) -> str:
        backend = str(self.config.get("dependencies.package_manager", "auto"))
        if backend != "auto":
            logger.debug("Using forced package manager backend: %s", backend)
            return backend
        for manager in SUPPORTED_PACKAGE_MANAGERS:
            if self._which(manager):
                logger.debug("Detected package manager: %s", manager)
                return manager
        raise DependencyError(
            f"No supported package manager found ({', '.join(SUPPORTED_PACKAGE_MANAGERS)})"
        )

    def _target_version(self) -> str:
        if "version" in self.ctx.artifacts:
            return self.ctx.artifacts["version"]
        version = str(self.config.get("application.version", "latest") or "latest")
        if version == "latest":
            version = self.ctx.downloader.resolve_version()
        if not version:
            raise ConfigurationError("Could not determine the application version to install")
        self.ctx.artifacts["version"] = version
        return version

    def _collaborator_command(self, name: str) -> list[str]:
        """Configured argv of a collaborator with placeholders expanded."""
        template = [str(arg) for arg in self.config.get_array(f"collaborators.{name}.command")]
        values = {
            "{installer}": str(self.ctx.artifacts.get("installer", "")),
            "{package}": str(self.ctx.artifacts.get("package", "")),
            "{version}": str(self.ctx.artifacts.get("version", "")),
            "{workdir}": str(self.session.temp_dir),
        }
        command = []
        for arg in template:
            for placeholder, value in values.items():
                arg = arg.replace(placeholder, value)
            command.append(arg)
        return command

    def _run_collaborator(self, name: str) -> Receipt | None:
        """Run a configured collaborator. None when it is not configured."""
        command = self._collaborator_command(name)
        if not command:
            return None
        return self._run(
            f"{name}:collaborator",
            command,
            f"{name} collaborator",
            timeout=self.config.get_int(f"collaborators.{name}.timeout", 600),
            cwd=self.session.temp_dir,
            env=self.config.as_env(),
        )

    def _log_installed_version(self) -> None:
        receipt = self._run(
            "probe:installed-version",
            ["rpm", "-q", "--queryformat", "%{VERSION}", self.package_name],
            "installed version",
            mutating=False,
            timeout=60,
        )
        if receipt.ok and receipt.output.strip():
            logger.info("Current version: %s", receipt.output.strip())
        else:
            logger.info("No installed version of %s found", self.package_name)

    # ── Phases ──────────────────────────────────────────────────

    def _validate(self) -> PhaseOutcome:
        validator = self.ctx.validator
        mismatches = validator.check_requirements(validator.requirement_tokens(self.config))
        if mismatches:
            raise InstallerError(
                "System requirements not met: " + "; ".join(mismatches),
                context={"mismatches": mismatches},
            )

        validator.validate_prerequisites(self.config.get_array("dependencies.required_commands"))

        issues = validator.check_system_health()
        if issues:
            logger.warning("System health issues detected, but continuing")
            return _done(f"{len(issues)} health warnings")
        return _done()

    def _install_dependencies(self) -> PhaseOutcome:
        manager = self._package_manager()

        required = self.config.get_array("dependencies.required_packages")
        missing = [p for p in required if not self._is_installed(p)]
        if missing:
            logger.info("Installing required packages: %s", " ".join(missing))
            receipt = self._run(
                "deps:install-required",
                [manager, "install", "-y", *missing],
                "install required packages",
                needs_sudo=True,
                timeout=1800,
            )
            if receipt.failed:
                raise DependencyError(
                    f"Failed to install required packages: {receipt.error}",
                    command=" ".join([manager, "install", "-y", *missing]),
                )
        else:
            logger.info("All required packages already installed")

        optional = self.config.get_array("dependencies.optional_packages")
        missing_optional = [p for p in optional if not self._is_installed(p)]
        if missing_optional:
            logger.info("Installing optional packages: %s", " ".join(missing_optional))
            receipt = self._run(
                "deps:install-optional",
                [manager, "install", "-y", *missing_optional],
                "install optional packages",
                needs_sudo=True,
                timeout=1800,
            )
            if receipt.failed:
                logger.warning("Optional packages could not be installed: %s", receipt.error)

        return _done(f"{len(missing)} required, {len(missing_optional)} optional to install")

    def _download(self) -> PhaseOutcome:
        downloader = self.ctx.downloader
        version = self._target_version()
        url = downloader.download_url_for(version)
        filename = str(self.config.get("application.installer_filename", "installer-{version}.exe"))
        dest = downloader.cache_dir / filename.replace("{version}", version)
        self.ctx.artifacts["installer"] = dest

        if self.ctx.dry_run:
            logger.info("[dry-run] Would download %s to %s", url, dest)
            return _skipped("dry-run")

        result = downloader.fetch(
            url,
            dest,
            checksum=self.config.get("application.checksum") or None,
            algorithm=str(self.config.get("application.checksum_algorithm", "sha256")),
        )
        if result.cached:
            return _done("cached")
        return _done(f"{result.size_bytes} bytes in {result.attempts} attempts")

    def _build(self) -> PhaseOutcome:
        version = self._target_version()
        filename = str(self.config.get("build.package_filename", "{package_name}-{version}.rpm"))
        package = self.session.temp_dir / (
            filename.replace("{package_name}", self.package_name).replace("{version}", version)
        )
        self.ctx.artifacts["package"] = package

        receipt = self._run_collaborator("build")
        if receipt is None:
            raise BuildError("No build collaborator configured (collaborators.build.command)")
        if receipt.skipped:
            return _skipped("dry-run")
        if receipt.failed:
            raise BuildError(
                f"Build collaborator failed: {receipt.error}",
                command=" ".join(self._collaborator_command("build")),
            )
        if not package.is_file():
            raise BuildError(f"Build collaborator did not produce {package}")
        return _done(package.name)

    def _optimize(self) -> PhaseOutcome:
        receipt = self._run_collaborator("optimize")
        if receipt is None:
            return _skipped("no optimizer configured")
        if receipt.skipped:
            return _skipped("dry-run")
        if receipt.failed:
            raise BuildError(f"Optimization failed: {receipt.error}")
        return _done()

    def _package_install(self) -> PhaseOutcome:
        package = self.ctx.artifacts.get("package")
        if package is None:
            raise BuildError("No package was built")

        name = self.package_name
        if not self._is_installed(name):
            self.ctx.rollback.push(f"remove package {name}", lambda: self._uninstall_package(name))

        command = ["rpm", "-Uvh", str(package)]
        receipt = self._run("package:install", command, f"install {name}", needs_sudo=True)
        if receipt.skipped:
            return _skipped("dry-run")
        if receipt.failed:
            raise InstallerError(f"Package installation failed: {receipt.error}", command=" ".join(command))
        return _done(name)

    def _uninstall_package(self, name: str) -> bool:
        receipt = self._run("package:remove", ["rpm", "-e", name], f"remove {name}", needs_sudo=True)
        return not receipt.failed

    def _integrate(self) -> PhaseOutcome:
        receipt = self._run_collaborator("integrate")
        if receipt is None:
            return _skipped("no integration configured")
        if receipt.skipped:
            return _skipped("dry-run")
        if receipt.failed:
            raise InstallerError(f"Desktop integration failed: {receipt.error}")
        return _done()

    def _remove_package(self) -> PhaseOutcome:
        name = self.package_name
        if not self._is_installed(name):
            logger.info("%s is not installed", name)
            return _skipped("not installed")

        command = ["rpm", "-e", name]
        receipt = self._run("package:remove", command, f"remove {name}", needs_sudo=True)
        if receipt.skipped:
            return _skipped("dry-run")
        if receipt.failed:
            raise InstallerError(f"Package removal failed: {receipt.error}", command=" ".join(command))
        return _done(name)

    def _remove_config(self) -> PhaseOutcome:
        path = self.config.get_path("application.config_directory", "~/.config/Claude")
        if not path.is_dir():
            return _skipped("no user configuration")

        if self.ctx.dry_run:
            logger.info("[dry-run] Would remove %s", path)
            return _skipped("dry-run")

        prompt = f"Remove user configuration directory ({path})?"
        if not (self.ctx.assume_yes or self.ctx.confirm(prompt)):
            logger.info("User configuration kept: %s", path)
            return _skipped("kept by user")

        receipt = self.ctx.registry.execute_action(Action(
            id="config:remove",
            adapter="filesystem",
            description=f"remove {path}",
            params={"operation": "remove", "path": str(path)},
        ))
        if receipt.skipped:
            return _skipped(receipt.output or "skipped")
        if receipt.failed:
            raise InstallerError(f"Cannot remove {path}: {receipt.error}")
        logger.info("User configuration removed")
        return _done(str(path))

    def _integration_cleanup(self) -> PhaseOutcome:
        receipt = self._run_collaborator("cleanup_integration")
        if receipt is None:
            return _skipped("no integration cleanup configured")
        if receipt.skipped:
            return _skipped("dry-run")
        if receipt.failed:
            raise InstallerError(f"Integration cleanup failed: {receipt.error}")
        return _done()

    def _existence_probe(self) -> PhaseOutcome:
        binary = self.config.get_path("application.binary_path", "")
        install_dir = self.config.get_path("application.installation_path", "")
        present = (binary != Path(".") and binary.is_file()) or (
            install_dir != Path(".") and install_dir.is_dir()
        )
        self.ctx.artifacts["present"] = present
        if present:
            logger.info("Existing installation detected")
            return _done("present")
        logger.info("No existing installation found")
        return _done("absent")
