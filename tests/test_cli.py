"""
Tests for CLI commands — global options, actions, config, system and cache.
"""

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from desktop_installer import __version__
from desktop_installer.main import cli


@pytest.fixture(autouse=True)
def isolated_home(tmp_path: Path, monkeypatch):
    """Keep user-level override files and DI_* variables out of the run."""
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.chdir(tmp_path)
    for var in ("DI_DEBUG", "DI_LOG_LEVEL", "DI_LOG_FORMAT", "DI_LOG_FILE", "DI_BACKEND",
                "DI_MAX_RETRIES", "DI_RETRY_DELAY", "DI_ENABLE_RECOVERY"):
        monkeypatch.delenv(var, raising=False)


def _config(tmp_path: Path, **sections) -> Path:
    """Override file pointing every path under tmp_path, no host requirements."""
    data = {
        "installer": {
            "log_directory": str(tmp_path / "state"),
            "error_log": str(tmp_path / "state" / "errors.ndjson"),
        },
        "application": {
            "binary_path": str(tmp_path / "bin" / "app"),
            "installation_path": str(tmp_path / "lib" / "app"),
            "config_directory": str(tmp_path / "home" / ".config" / "App"),
        },
        "build": {"temp_directory": str(tmp_path / "tmp" / "di")},
        "downloader": {"cache_directory": str(tmp_path / "cache")},
        "system": {"required_distribution": "", "required_architecture": "", "required_session": ""},
        "dependencies": {"required_commands": []},
    }
    for name, values in sections.items():
        data.setdefault(name, {}).update(values)
    path = tmp_path / "override.json"
    path.write_text(json.dumps(data))
    return path


class TestCLIGlobal:
    """Tests for global CLI behavior."""

    def test_help(self):
        result = CliRunner().invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "install" in result.output
        assert "uninstall" in result.output

    def test_version(self):
        result = CliRunner().invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_missing_config_file(self, tmp_path: Path):
        result = CliRunner().invoke(cli, ["-c", str(tmp_path / "nope.json"), "check"])
        assert result.exit_code == 6

    def test_malformed_config_file(self, tmp_path: Path):
        bad = tmp_path / "bad.json"
        bad.write_text("{ nope")
        result = CliRunner().invoke(cli, ["-c", str(bad), "config", "show"])
        assert result.exit_code == 6


# ── Actions ──────────────────────────────────────────────────────────


class TestCheckCommand:
    def test_absent(self, tmp_path: Path):
        result = CliRunner().invoke(cli, ["-q", "-c", str(_config(tmp_path)), "check"])
        assert result.exit_code == 1
        assert "not installed" in result.output

    def test_present(self, tmp_path: Path):
        binary = tmp_path / "bin" / "app"
        binary.parent.mkdir(parents=True)
        binary.write_text("#!/bin/sh\n")
        result = CliRunner().invoke(cli, ["-q", "-c", str(_config(tmp_path)), "check"])
        assert result.exit_code == 0
        assert "Application is installed" in result.output

    def test_keep_temp_prints_path(self, tmp_path: Path):
        result = CliRunner().invoke(cli, ["-q", "-c", str(_config(tmp_path)), "check", "--keep-temp"])
        assert "Temporary files preserved at:" in result.output
        kept = list((tmp_path / "tmp").iterdir())
        assert len(kept) == 1 and kept[0].name.startswith("di-")

    def test_session_artifacts_written(self, tmp_path: Path):
        CliRunner().invoke(cli, ["-q", "-c", str(_config(tmp_path)), "check"])
        state = tmp_path / "state"
        assert (state / "last_session.json").is_file()
        assert list(state.glob("*.log"))
        assert not (tmp_path / "tmp").exists() or not list((tmp_path / "tmp").iterdir())

    def test_unmet_requirement_fails(self, tmp_path: Path):
        config = _config(tmp_path, system={"required_distribution": "nonexistentos"})
        result = CliRunner().invoke(cli, ["-q", "-c", str(config), "check"])
        assert result.exit_code == 1
        assert (tmp_path / "state" / "errors.ndjson").is_file()


class TestUninstallCommand:
    def test_dry_run(self, tmp_path: Path):
        config_dir = tmp_path / "home" / ".config" / "App"
        config_dir.mkdir(parents=True)
        result = CliRunner().invoke(
            cli, ["-q", "-c", str(_config(tmp_path)), "uninstall", "--dry-run", "--yes"]
        )
        assert result.exit_code == 0
        assert "Uninstall completed" in result.output
        assert config_dir.is_dir()


# ── Config ───────────────────────────────────────────────────────────


class TestConfigCommands:
    def test_show(self, tmp_path: Path):
        result = CliRunner().invoke(cli, ["-q", "-c", str(_config(tmp_path)), "config", "show"])
        assert result.exit_code == 0
        assert "Current configuration:" in result.output
        assert "application.package_name = claude-desktop" in result.output
        assert "override.json" in result.output

    def test_show_json_pattern(self, tmp_path: Path):
        result = CliRunner().invoke(
            cli, ["-q", "-c", str(_config(tmp_path)), "config", "show", "^installer\\.", "--json"]
        )
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["installer.version"] == __version__
        assert all(k.startswith("installer.") for k in data)

    def test_validate_ok(self, tmp_path: Path):
        result = CliRunner().invoke(cli, ["-q", "-c", str(_config(tmp_path)), "config", "validate"])
        assert result.exit_code == 0
        assert "Configuration is valid" in result.output

    def test_validate_violation(self, tmp_path: Path):
        config = _config(tmp_path, installer={"max_retries": "many"})
        result = CliRunner().invoke(cli, ["-q", "-c", str(config), "config", "validate"])
        assert result.exit_code == 1
        assert "installer.max_retries" in result.output

    def test_init(self, tmp_path: Path):
        target = tmp_path / "user.json"
        runner = CliRunner()
        result = runner.invoke(cli, ["-q", "config", "init", str(target), "--template", "wayland-optimized"])
        assert result.exit_code == 0
        assert json.loads(target.read_text())["system"]["required_session"] == "wayland"

        again = runner.invoke(cli, ["-q", "config", "init", str(target)])
        assert again.exit_code == 1
        assert "already exists" in again.output

        forced = runner.invoke(cli, ["-q", "config", "init", str(target), "--force"])
        assert forced.exit_code == 0


# ── System & cache ───────────────────────────────────────────────────


class TestSystemReport:
    def test_json(self):
        result = CliRunner().invoke(cli, ["-q", "system", "report", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert "architecture" in data
        assert set(data["capabilities"]) == {"vaapi", "vulkan", "opengl"}

    def test_text(self):
        result = CliRunner().invoke(cli, ["-q", "system", "report"])
        assert result.exit_code == 0
        assert "System information:" in result.output


class TestCacheClean:
    def test_empty_cache(self, tmp_path: Path):
        result = CliRunner().invoke(cli, ["-q", "-c", str(_config(tmp_path)), "cache", "clean"])
        assert result.exit_code == 0
        assert "Removed 0 cached files" in result.output
