"""
System validator — host facts, requirement checks and health warnings.

Facts are detected lazily and memoized per validator instance; one
validator lives for one session. Detection reads ``/etc/os-release``,
``/proc`` and the process environment, and asks the registry for the
few facts that need an external tool (GPU via ``lspci``).

Requirement tokens:
    fedora38, fedora     distribution (and minimum version)
    x86_64, aarch64      architecture
    wayland, x11         session type
    gnome, kde, ...      desktop environment

Every failing requirement is reported, not just the first.
"""

from __future__ import annotations

import logging
import os
import platform
import re
import shutil
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

from desktop_installer.adapters.registry import AdapterRegistry
from desktop_installer.core.models.action import Action
from desktop_installer.core.reliability.errors import DependencyError

logger = logging.getLogger(__name__)

FACTS = (
    "os",
    "distribution",
    "version",
    "architecture",
    "desktop",
    "session",
    "display_server",
    "gpu",
    "cpu",
    "memory",
    "kernel",
)

ARCHITECTURES = ("x86_64", "aarch64", "i386", "armv7l")
SESSION_TYPES = ("wayland", "x11")
DESKTOPS = ("gnome", "kde", "xfce", "mate", "cinnamon", "lxde", "lxqt", "i3", "sway", "budgie")

_ARCH_ALIASES = {"amd64": "x86_64", "arm64": "aarch64", "i686": "i386"}
_OS_NAMES = {"Linux": "linux", "Darwin": "macos", "FreeBSD": "freebsd"}
_DISTRO_TOKEN = re.compile(r"^(?P<distro>[a-z][a-z-]*?)(?P<version>\d+(?:\.\d+)*)?$")

# Health thresholds
DISK_USAGE_LIMIT = 90.0
MEMORY_USAGE_LIMIT = 95.0
LOAD_PER_CPU_LIMIT = 2.0

CAPABILITY_TOOLS = {
    "vaapi": "vainfo",
    "vulkan": "vulkaninfo",
    "opengl": "glxinfo",
}


def _version_tuple(text: str) -> tuple[int, ...] | None:
    parts = re.findall(r"\d+", text)
    return tuple(int(p) for p in parts) if parts else None


class SystemValidator:
    """Host facts and checks for one session.

    Args:
        registry: Runs read-only probe commands (``lspci``).
        environ: Process environment (default: ``os.environ``).
        os_release: Path of the os-release file.
        proc_root: Root of the proc filesystem.
        facts: Pre-seeded facts; they are never re-detected.
        which: Command lookup.
    """

    def __init__(
        self,
        registry: AdapterRegistry | None = None,
        *,
        environ: Mapping[str, str] | None = None,
        os_release: Path = Path("/etc/os-release"),
        proc_root: Path = Path("/proc"),
        facts: Mapping[str, str] | None = None,
        which: Callable[[str], str | None] = shutil.which,
    ):
        self._registry = registry
        self._environ = environ if environ is not None else os.environ
        self._os_release = os_release
        self._proc_root = proc_root
        self._which = which
        self._cache: dict[str, str] = dict(facts or {})
        self._detectors: dict[str, Callable[[], str]] = {
            "os": self._detect_os,
            "distribution": lambda: self._release_field("ID"),
            "version": lambda: self._release_field("VERSION_ID"),
            "architecture": self._detect_architecture,
            "desktop": self._detect_desktop,
            "session": self._detect_session,
            "display_server": self._detect_display_server,
            "gpu": self._detect_gpu,
            "cpu": self._detect_cpu,
            "memory": self._detect_memory,
            "kernel": platform.release,
        }

    # ── Facts ───────────────────────────────────────────────────

    def detect(self, fact: str, refresh: bool = False) -> str:
        """One host fact. Unknown names raise ``ValueError``."""
        if fact not in self._detectors:
            raise ValueError(f"Unknown system fact: {fact}")
        if not refresh and fact in self._cache:
            return self._cache[fact]

        try:
            value = self._detectors[fact]() or "unknown"
        except OSError as e:
            logger.debug("Detection of %s failed: %s", fact, e)
            value = "unknown"
        self._cache[fact] = value
        logger.debug("Detected %s: %s", fact, value)
        return value

    def _detect_os(self) -> str:
        return _OS_NAMES.get(platform.system(), "unknown")

    def _detect_architecture(self) -> str:
        arch = platform.machine().lower()
        return _ARCH_ALIASES.get(arch, arch)

    def _release_field(self, key: str) -> str:
        if not self._os_release.is_file():
            return "unknown"
        for line in self._os_release.read_text(encoding="utf-8", errors="replace").splitlines():
            name, sep, value = line.partition("=")
            if sep and name.strip() == key:
                return value.strip().strip('"').strip("'").lower() or "unknown"
        return "unknown"

    def _detect_desktop(self) -> str:
        for var in ("XDG_CURRENT_DESKTOP", "DESKTOP_SESSION", "GDMSESSION"):
            value = self._environ.get(var, "")
            if value:
                return value.lower()
        return "unknown"

    def _detect_session(self) -> str:
        if self._environ.get("XDG_SESSION_TYPE"):
            return self._environ["XDG_SESSION_TYPE"].lower()
        return self._detect_display_server()

    def _detect_display_server(self) -> str:
        if self._environ.get("WAYLAND_DISPLAY"):
            return "wayland"
        if self._environ.get("DISPLAY"):
            return "x11"
        return "unknown"

    def _detect_gpu(self) -> str:
        if self._registry is None or not self._which("lspci"):
            return "unknown"
        receipt = self._registry.execute_action(Action(
            id="detect:lspci",
            description="list PCI devices",
            command=["lspci"],
            mutating=False,
            timeout=30,
        ))
        if not receipt.ok:
            return "unknown"
        for line in receipt.output.splitlines():
            if re.search(r"VGA|3D|Display", line):
                return line.split(":", 2)[-1].strip()
        return "unknown"

    def _detect_cpu(self) -> str:
        cpuinfo = self._proc_root / "cpuinfo"
        if not cpuinfo.is_file():
            return "unknown"
        for line in cpuinfo.read_text(encoding="utf-8", errors="replace").splitlines():
            if line.startswith("model name"):
                return line.split(":", 1)[1].strip()
        return "unknown"

    def _detect_memory(self) -> str:
        meminfo = self._read_meminfo()
        total_kb = meminfo.get("MemTotal", 0)
        return f"{total_kb // 1024 // 1024}GB"

    def _read_meminfo(self) -> dict[str, int]:
        path = self._proc_root / "meminfo"
        values: dict[str, int] = {}
        if not path.is_file():
            return values
        for line in path.read_text(encoding="utf-8", errors="replace").splitlines():
            name, _, rest = line.partition(":")
            fields = rest.split()
            if fields and fields[0].isdigit():
                values[name.strip()] = int(fields[0])
        return values

    # ── Requirements ────────────────────────────────────────────

    def check_requirements(self, tokens: list[str]) -> list[str]:
        """Every unmet requirement, as human-readable messages."""
        mismatches = []
        for raw in tokens:
            token = raw.strip().lower()
            if not token:
                continue
            problem = self._check_token(token)
            if problem:
                mismatches.append(problem)

        if mismatches:
            logger.error("System requirements not met:")
            for m in mismatches:
                logger.error("  - %s", m)
        else:
            logger.info("All system requirements met")
        return mismatches

    def _check_token(self, token: str) -> str | None:
        if token in ARCHITECTURES:
            current = self.detect("architecture")
            if current != token:
                return f"Requires {token} architecture, found: {current}"
            return None

        if token in SESSION_TYPES:
            current = self.detect("session")
            if current != token:
                return f"Requires {token.capitalize()} session, found: {current}"
            return None

        if token in DESKTOPS:
            current = self.detect("desktop")
            if token not in re.split(r"[:;]", current):
                return f"Requires {token.upper()} desktop, found: {current}"
            return None

        m = _DISTRO_TOKEN.match(token)
        if m is None:
            logger.warning("Unknown requirement: %s", token)
            return None

        distro, minimum = m.group("distro"), m.group("version")
        current_distro = self.detect("distribution")
        if current_distro != distro:
            return f"Requires {distro.capitalize()}, found: {current_distro}"
        if minimum:
            current_version = self.detect("version")
            have, need = _version_tuple(current_version), _version_tuple(minimum)
            if have is None or have < need:
                return f"Requires {distro.capitalize()} {minimum}+, found: {current_version}"
        return None

    def requirement_tokens(self, config: Any) -> list[str]:
        """Requirement tokens from the ``system`` configuration section."""
        tokens = []
        distro = str(config.get("system.required_distribution", "") or "")
        if distro:
            tokens.append(f"{distro}{config.get('system.minimum_version', '') or ''}")
        for key in ("system.required_architecture", "system.required_session"):
            value = str(config.get(key, "") or "")
            if value:
                tokens.append(value)
        return tokens

    def validate_prerequisites(self, commands: list[str]) -> None:
        """Raise ``DependencyError`` naming every missing command."""
        logger.info("Validating prerequisites")
        missing = [cmd for cmd in commands if not self._which(cmd)]
        if missing:
            for cmd in missing:
                logger.error("Missing required command: %s", cmd)
            raise DependencyError(
                f"Missing required commands: {', '.join(missing)}",
                context={"missing": missing},
            )
        logger.debug("All prerequisites satisfied")

    # ── Health & capabilities ───────────────────────────────────

    def check_system_health(self, root: str = "/") -> list[str]:
        """Resource warnings: disk, memory, load. Never fatal."""
        issues = []

        try:
            usage = shutil.disk_usage(root)
            disk_pct = usage.used * 100 / usage.total if usage.total else 0.0
            if disk_pct > DISK_USAGE_LIMIT:
                issues.append(f"Low disk space: {disk_pct:.0f}% used")
        except OSError as e:
            logger.debug("Disk usage check failed: %s", e)

        meminfo = self._read_meminfo()
        total, available = meminfo.get("MemTotal", 0), meminfo.get("MemAvailable")
        if total and available is not None:
            mem_pct = (total - available) * 100 / total
            if mem_pct > MEMORY_USAGE_LIMIT:
                issues.append(f"High memory usage: {mem_pct:.0f}%")

        try:
            load = os.getloadavg()[0]
            cpus = os.cpu_count() or 1
            if load > cpus * LOAD_PER_CPU_LIMIT:
                issues.append(f"High system load: {load:.2f} (CPUs: {cpus})")
        except OSError as e:
            logger.debug("Load average unavailable: %s", e)

        if issues:
            logger.warning("System health issues detected:")
            for issue in issues:
                logger.warning("  - %s", issue)
        else:
            logger.debug("System health check passed")
        return issues

    def hardware_capabilities(self) -> dict[str, bool]:
        """Presence of GPU acceleration tooling."""
        return {name: bool(self._which(tool)) for name, tool in CAPABILITY_TOOLS.items()}

    def system_report(self) -> dict[str, Any]:
        """Every fact plus hardware capabilities."""
        report: dict[str, Any] = {fact: self.detect(fact) for fact in FACTS}
        report["capabilities"] = self.hardware_capabilities()
        return report
