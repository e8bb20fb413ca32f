"""
Shared test fixtures and configuration.
"""

from pathlib import Path

import pytest

from desktop_installer.adapters.mock import MockAdapter
from desktop_installer.adapters.registry import AdapterRegistry
from desktop_installer.core.config.loader import ConfigStore
from desktop_installer.core.services.downloader import Downloader
from desktop_installer.core.services.system_detection import SystemValidator

FEDORA_FACTS = {
    "os": "linux",
    "distribution": "fedora",
    "version": "40",
    "architecture": "x86_64",
    "session": "wayland",
    "desktop": "gnome",
}


def fake_which(name: str) -> str:
    return f"/usr/bin/{name}"


@pytest.fixture
def config(tmp_path: Path) -> ConfigStore:
    """Packaged defaults with every path redirected under tmp_path."""
    store = ConfigStore.build(site_paths=None, environ={})
    store.set("build.temp_directory", str(tmp_path / "tmp" / "di"))
    store.set("installer.log_directory", str(tmp_path / "state"))
    store.set("installer.error_log", str(tmp_path / "state" / "errors.ndjson"))
    store.set("downloader.cache_directory", str(tmp_path / "cache"))
    store.set("application.config_directory", str(tmp_path / "home" / ".config" / "App"))
    store.set("application.binary_path", str(tmp_path / "usr" / "bin" / "app"))
    store.set("application.installation_path", str(tmp_path / "usr" / "lib64" / "app"))
    store.set("application.version", "1.2.3")
    store.set("application.checksum", "")
    store.set("dependencies.package_manager", "dnf")
    store.set("installer.retry_delay", 0)
    store.set("downloader.retry_delay_seconds", 0)
    return store


@pytest.fixture
def command_mock() -> MockAdapter:
    return MockAdapter(adapter_name="command")


@pytest.fixture
def fs_mock() -> MockAdapter:
    return MockAdapter(adapter_name="filesystem")


@pytest.fixture
def registry(command_mock: MockAdapter, fs_mock: MockAdapter) -> AdapterRegistry:
    reg = AdapterRegistry()
    reg.register(command_mock)
    reg.register(fs_mock)
    return reg


@pytest.fixture
def validator(registry: AdapterRegistry) -> SystemValidator:
    return SystemValidator(registry, facts=FEDORA_FACTS, which=fake_which)


class FakeTransfer:
    """Stands in for the HTTP transfer primitive."""

    def __init__(self, payload: bytes = b"installer-bytes", failures: int = 0):
        self.payload = payload
        self.failures = failures
        self.calls: list[str] = []

    def __call__(self, url: str, dest: Path, timeout: float) -> int:
        self.calls.append(url)
        if len(self.calls) <= self.failures:
            raise OSError("connection reset")
        dest.write_bytes(self.payload)
        return len(self.payload)


@pytest.fixture
def transfer() -> FakeTransfer:
    return FakeTransfer()


@pytest.fixture
def downloader(config: ConfigStore, transfer: FakeTransfer) -> Downloader:
    return Downloader.from_config(
        config,
        transfer=transfer,
        get_text=lambda url, timeout: "",
        sleep=lambda s: None,
    )
