"""
Recovery probes — per-category checks run after a fatal error.

A probe only prepares the ground: it tells the error controller whether
the condition that caused the failure has cleared. It never re-invokes
the failed work.

    permission   ``sudo -n true`` succeeds
    network      a TCP connection to the probe host succeeds (then wait)
    dependency   a supported package manager is on PATH
"""

from __future__ import annotations

import logging
import shutil
import socket
import time
from collections.abc import Callable

from desktop_installer.adapters.registry import AdapterRegistry
from desktop_installer.core.models.action import Action

logger = logging.getLogger(__name__)

SUPPORTED_PACKAGE_MANAGERS = ("dnf", "yum")


def _tcp_connect(host: str, port: int, timeout: float) -> None:
    with socket.create_connection((host, port), timeout=timeout):
        pass


class RecoveryProbes:
    """Category → recovery probe.

    Args:
        registry: Used for the ``sudo -n true`` call.
        probe_host: Host for the network probe.
        probe_port: TCP port for the network probe.
        retry_delay: Seconds to wait after connectivity comes back.
        sleep, connect, which: Injectable for tests.
    """

    def __init__(
        self,
        registry: AdapterRegistry,
        probe_host: str = "8.8.8.8",
        probe_port: int = 53,
        retry_delay: float = 5.0,
        connect_timeout: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
        connect: Callable[[str, int, float], None] = _tcp_connect,
        which: Callable[[str], str | None] = shutil.which,
    ):
        self._registry = registry
        self.probe_host = probe_host
        self.probe_port = probe_port
        self.retry_delay = retry_delay
        self.connect_timeout = connect_timeout
        self._sleep = sleep
        self._connect = connect
        self._which = which
        self._probes: dict[str, Callable[[], bool]] = {
            "permission": self.permission,
            "network": self.network,
            "dependency": self.dependency,
        }

    def attempt(self, category: str) -> bool:
        """Run the probe for ``category``. True means the condition cleared."""
        probe = self._probes.get(category)
        if probe is None:
            logger.warning("No recovery strategy for error category: %s", category)
            return False

        logger.info("Attempting recovery for %s error", category)
        try:
            cleared = probe()
        except Exception as e:
            logger.error("Recovery probe for %s raised: %s", category, e)
            return False

        if cleared:
            logger.info("Recovery successful for %s error", category)
        else:
            logger.warning("Recovery failed for %s error", category)
        return cleared

    def permission(self) -> bool:
        logger.info("Checking sudo access...")
        receipt = self._registry.execute_action(Action(
            id="recovery:sudo",
            description="non-interactive sudo check",
            command=["sudo", "-n", "true"],
            mutating=False,
            timeout=30,
        ))
        if not receipt.ok:
            logger.error("Sudo access required but not available")
        return receipt.ok

    def network(self) -> bool:
        logger.info("Checking network connectivity (%s:%d)...", self.probe_host, self.probe_port)
        try:
            self._connect(self.probe_host, self.probe_port, self.connect_timeout)
        except OSError as e:
            logger.error("No network connectivity: %s", e)
            return False
        logger.info("Network connectivity restored, waiting %ss before continuing", self.retry_delay)
        self._sleep(self.retry_delay)
        return True

    def dependency(self) -> bool:
        logger.info("Checking for a supported package manager...")
        for manager in SUPPORTED_PACKAGE_MANAGERS:
            if self._which(manager):
                logger.info("Package manager available: %s", manager)
                return True
        logger.error("No supported package manager found (%s)", ", ".join(SUPPORTED_PACKAGE_MANAGERS))
        return False
