"""
Tests for the system validator — facts, requirement checks, prerequisites.
"""

import logging
from pathlib import Path

import pytest

from conftest import FEDORA_FACTS, fake_which
from desktop_installer.adapters.mock import MockAdapter
from desktop_installer.adapters.registry import AdapterRegistry
from desktop_installer.core.config.loader import ConfigStore
from desktop_installer.core.reliability.errors import DependencyError, ExitCode
from desktop_installer.core.services.system_detection import FACTS, SystemValidator


def _os_release(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "os-release"
    path.write_text(text)
    return path


# ── Facts ────────────────────────────────────────────────────────────


class TestDetect:
    def test_os_release_parsing(self, tmp_path: Path):
        release = _os_release(tmp_path, 'NAME="Fedora Linux"\nID=fedora\nVERSION_ID="40"\n')
        v = SystemValidator(os_release=release, environ={})
        assert v.detect("distribution") == "fedora"
        assert v.detect("version") == "40"

    def test_missing_os_release(self, tmp_path: Path):
        v = SystemValidator(os_release=tmp_path / "absent", environ={})
        assert v.detect("distribution") == "unknown"

    def test_memoized(self, tmp_path: Path):
        release = _os_release(tmp_path, "ID=fedora\n")
        v = SystemValidator(os_release=release, environ={})
        assert v.detect("distribution") == "fedora"
        release.write_text("ID=ubuntu\n")
        assert v.detect("distribution") == "fedora"
        assert v.detect("distribution", refresh=True) == "ubuntu"

    def test_unknown_fact(self):
        with pytest.raises(ValueError, match="Unknown system fact"):
            SystemValidator(environ={}).detect("favourite_colour")

    def test_session_from_environment(self):
        assert SystemValidator(environ={"XDG_SESSION_TYPE": "Wayland"}).detect("session") == "wayland"
        assert SystemValidator(environ={"DISPLAY": ":0"}).detect("session") == "x11"
        assert SystemValidator(environ={}).detect("session") == "unknown"

    def test_desktop_from_environment(self):
        v = SystemValidator(environ={"XDG_CURRENT_DESKTOP": "GNOME"})
        assert v.detect("desktop") == "gnome"

    def test_proc_facts(self, tmp_path: Path):
        (tmp_path / "cpuinfo").write_text("processor\t: 0\nmodel name\t: Test CPU 3000\n")
        (tmp_path / "meminfo").write_text("MemTotal:       16777216 kB\nMemAvailable:    8000000 kB\n")
        v = SystemValidator(environ={}, proc_root=tmp_path)
        assert v.detect("cpu") == "Test CPU 3000"
        assert v.detect("memory") == "16GB"

    def test_undecodable_files(self, tmp_path: Path):
        release = tmp_path / "os-release"
        release.write_bytes(b'NAME="Fed\xffora"\nID=fedora\n')
        (tmp_path / "meminfo").write_bytes(b"MemTotal:       8388608 kB\nVendor: \xfe\xff\n")
        v = SystemValidator(environ={}, os_release=release, proc_root=tmp_path)
        assert v.detect("distribution") == "fedora"
        assert v.detect("memory") == "8GB"

    def test_gpu_via_lspci(self):
        mock = MockAdapter()
        mock.set_output(
            "detect",
            "00:02.0 VGA compatible controller: Intel Corporation UHD Graphics 620\n",
        )
        registry = AdapterRegistry()
        registry.register(mock)
        v = SystemValidator(registry, environ={}, which=fake_which)
        assert v.detect("gpu") == "Intel Corporation UHD Graphics 620"
        assert mock.called_ids == ["detect:lspci"]

    def test_gpu_without_lspci(self):
        v = SystemValidator(AdapterRegistry(), environ={}, which=lambda c: None)
        assert v.detect("gpu") == "unknown"


# ── Requirements ─────────────────────────────────────────────────────


class TestRequirements:
    def test_all_met(self):
        v = SystemValidator(facts=FEDORA_FACTS)
        assert v.check_requirements(["fedora38", "x86_64", "wayland", "gnome"]) == []

    def test_every_mismatch_reported(self):
        facts = dict(FEDORA_FACTS, architecture="aarch64", session="x11")
        v = SystemValidator(facts=facts)
        problems = v.check_requirements(["x86_64", "wayland"])
        assert len(problems) == 2
        assert "x86_64" in problems[0]
        assert "Wayland" in problems[1]

    def test_version_too_old(self):
        v = SystemValidator(facts=dict(FEDORA_FACTS, version="37"))
        problems = v.check_requirements(["fedora38"])
        assert problems == ["Requires Fedora 38+, found: 37"]

    def test_version_compared_numerically(self):
        v = SystemValidator(facts=dict(FEDORA_FACTS, version="100"))
        assert v.check_requirements(["fedora38"]) == []

    def test_wrong_distribution(self):
        v = SystemValidator(facts=dict(FEDORA_FACTS, distribution="ubuntu"))
        assert v.check_requirements(["fedora"]) == ["Requires Fedora, found: ubuntu"]

    def test_unknown_token_warns(self, caplog):
        v = SystemValidator(facts=FEDORA_FACTS)
        with caplog.at_level(logging.WARNING):
            assert v.check_requirements(["???"]) == []
        assert "Unknown requirement" in caplog.text

    def test_tokens_from_config(self):
        store = ConfigStore({"system": {
            "required_distribution": "fedora",
            "minimum_version": "38",
            "required_architecture": "x86_64",
            "required_session": "",
        }})
        assert SystemValidator(facts=FEDORA_FACTS).requirement_tokens(store) == ["fedora38", "x86_64"]


class TestPrerequisites:
    def test_all_present(self):
        SystemValidator(which=fake_which).validate_prerequisites(["rpm", "dnf"])

    def test_every_missing_command_named(self):
        v = SystemValidator(which=lambda c: None if c in ("7z", "icotool") else f"/usr/bin/{c}")
        with pytest.raises(DependencyError) as exc:
            v.validate_prerequisites(["rpm", "7z", "icotool"])
        assert exc.value.exit_code == ExitCode.DEPENDENCY
        assert exc.value.context["missing"] == ["7z", "icotool"]


# ── Health & report ──────────────────────────────────────────────────


class TestHealth:
    def test_memory_pressure_reported(self, tmp_path: Path):
        (tmp_path / "meminfo").write_text("MemTotal: 1000 kB\nMemAvailable: 10 kB\n")
        v = SystemValidator(environ={}, proc_root=tmp_path)
        issues = v.check_system_health(str(tmp_path))
        assert any("memory" in i for i in issues)

    def test_health_is_list(self, tmp_path: Path):
        v = SystemValidator(environ={}, proc_root=tmp_path)
        assert isinstance(v.check_system_health(str(tmp_path)), list)


class TestReport:
    def test_capabilities(self):
        v = SystemValidator(which=lambda c: "/usr/bin/vainfo" if c == "vainfo" else None)
        assert v.hardware_capabilities() == {"vaapi": True, "vulkan": False, "opengl": False}

    def test_report_has_every_fact(self):
        facts = dict.fromkeys(FACTS, "x")
        report = SystemValidator(facts=facts, which=lambda c: None).system_report()
        assert set(FACTS) <= set(report)
        assert report["capabilities"] == {"vaapi": False, "vulkan": False, "opengl": False}
