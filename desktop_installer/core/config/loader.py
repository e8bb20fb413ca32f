"""
Configuration store — layered JSON configuration with dotted-path access.

The store is built once per session:

    packaged default.json
      ← user file (--config)
      ← site overrides (/etc, ~/.config, ./desktop-installer.json)
      ← environment variables (DI_*)
      ← runtime ``set()`` calls

Documents are deep-merged: on a scalar conflict the override wins; an
override array replaces the base array. After merging the tree is
flattened to dotted keys, arrays becoming index-suffixed keys
(``dependencies.required_packages.0``).

Schema validation is best-effort: violations are logged as warnings and
the configuration is used anyway. A missing or malformed file is fatal.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import jsonschema
import yaml

from desktop_installer.core.data import DEFAULT_CONFIG_PATH, SCHEMA_PATH
from desktop_installer.core.reliability.errors import ConfigurationError

logger = logging.getLogger(__name__)

# Site-level override files, merged in this order when present
SITE_CONFIG_PATHS: tuple[Path, ...] = (
    Path("/etc/desktop-installer/config.json"),
    Path("~/.config/desktop-installer/config.json"),
    Path("desktop-installer.json"),
)

# Environment variable → configuration key
ENV_OVERRIDES: dict[str, str] = {
    "DI_LOG_LEVEL": "installer.log_level",
    "DI_LOG_FORMAT": "installer.log_format",
    "DI_ENABLE_RECOVERY": "installer.enable_recovery",
    "DI_MAX_RETRIES": "installer.max_retries",
    "DI_RETRY_DELAY": "installer.retry_delay",
    "DI_BACKEND": "dependencies.package_manager",
}

_TRUE = ("true", "1", "yes", "on")
_FALSE = ("false", "0", "no", "off", "")

USER_CONFIG_TEMPLATES: dict[str, dict[str, Any]] = {
    "minimal": {
        "installer": {"log_level": "INFO"},
        "build": {"keep_temp_files": False},
    },
    "wayland-optimized": {
        "installer": {"log_level": "DEBUG"},
        "system": {"required_session": "wayland"},
        "dependencies": {
            "optional_packages": ["libva-utils", "vulkan-tools", "mesa-vulkan-drivers"],
        },
    },
}


class ConfigError(ConfigurationError):
    """Raised when a configuration file is missing or malformed."""


# ── Document helpers ────────────────────────────────────────────


def read_document(path: Path) -> dict[str, Any]:
    """Read a JSON (or YAML) configuration document.

    Raises:
        ConfigError: If the file is missing, unreadable, malformed, or
            not a mapping at the top level.
    """
    path = Path(path).expanduser()
    if not path.is_file():
        raise ConfigError(f"Configuration file not found: {path}")

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        if path.suffix in (".yml", ".yaml"):
            data = yaml.safe_load(raw)
        else:
            data = json.loads(raw)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigError(f"Invalid syntax in configuration file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Expected a mapping in {path}, got {type(data).__name__}")
    return data


def merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Deep-merge two documents. Neither input is modified.

    Nested mappings merge key by key; any other override value
    (scalar or array) replaces the base value.
    """
    result = copy.deepcopy(dict(base))
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(result.get(key), Mapping):
            result[key] = merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def flatten(document: Any, prefix: str = "") -> dict[str, Any]:
    """Flatten a document into dotted keys, preserving order."""
    flat: dict[str, Any] = {}
    if isinstance(document, Mapping):
        items = ((str(k), v) for k, v in document.items())
    elif isinstance(document, list):
        items = ((str(i), v) for i, v in enumerate(document))
    else:
        if prefix:
            flat[prefix] = document
        return flat

    for key, value in items:
        path = f"{prefix}.{key}" if prefix else key
        if isinstance(value, (Mapping, list)):
            flat.update(flatten(value, path))
        else:
            flat[path] = value
    return flat


def validate(document: Mapping[str, Any], schema: Mapping[str, Any]) -> list[str]:
    """Validate ``document`` against a JSON schema.

    Returns:
        Human-readable violations. Empty means valid. Never raises for
        an invalid document or schema.
    """
    try:
        validator_cls = jsonschema.validators.validator_for(schema)
        validator_cls.check_schema(schema)
        validator = validator_cls(schema)
    except jsonschema.SchemaError as e:
        return [f"invalid schema: {e.message}"]

    warnings = []
    for error in sorted(validator.iter_errors(document), key=lambda e: list(e.path)):
        location = ".".join(str(p) for p in error.path) or "<root>"
        warnings.append(f"{location}: {error.message}")
    return warnings


def create_user_config(path: Path, template: str = "minimal") -> Path:
    """Write a starter override file from a named template."""
    if template not in USER_CONFIG_TEMPLATES:
        raise ConfigError(
            f"Unknown template: {template} (choose from {', '.join(USER_CONFIG_TEMPLATES)})"
        )
    path = Path(path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(USER_CONFIG_TEMPLATES[template], indent=2) + "\n", encoding="utf-8")
    logger.info("User configuration file created: %s (template=%s)", path, template)
    return path


# ── Store ───────────────────────────────────────────────────────


class ConfigStore:
    """Merged configuration with typed getters.

    Other components only read through ``get*``. ``set`` is for
    runtime overrides (CLI flags, environment) and survives later
    ``load`` calls.
    """

    def __init__(self, document: Mapping[str, Any] | None = None):
        self._document: dict[str, Any] = dict(document or {})
        self._runtime: dict[str, Any] = {}
        self._flat: dict[str, Any] = {}
        self.sources: list[Path] = []
        self.schema_warnings: list[str] = []
        self._reindex()

    # ── Construction ────────────────────────────────────────────

    @classmethod
    def build(
        cls,
        config_path: Path | None = None,
        schema_path: Path | None = SCHEMA_PATH,
        *,
        defaults_path: Path = DEFAULT_CONFIG_PATH,
        site_paths: tuple[Path, ...] | None = SITE_CONFIG_PATHS,
        environ: Mapping[str, str] | None = None,
    ) -> ConfigStore:
        """Build the session configuration from every layer."""
        store = cls()
        store.load(defaults_path)
        if config_path is not None:
            store.load(config_path)
        if site_paths:
            store.load_site_overrides(site_paths)
        store.apply_env_overrides(environ if environ is not None else os.environ)
        if schema_path is not None:
            store.check_schema(schema_path)
        return store

    def load(self, path: Path, schema_path: Path | None = None) -> None:
        """Merge a configuration file into the store.

        Raises:
            ConfigError: If the file is missing or malformed.
        """
        logger.info("Loading configuration from: %s", path)
        data = read_document(Path(path))
        self._document = merge(self._document, data)
        self.sources.append(Path(path))
        self._reindex()
        if schema_path is not None:
            self.check_schema(schema_path)
        logger.debug("Configuration now has %d keys", len(self._flat))

    def load_site_overrides(self, paths: tuple[Path, ...] = SITE_CONFIG_PATHS) -> list[Path]:
        """Merge every site-level override file that exists."""
        loaded = []
        for candidate in paths:
            site = Path(candidate).expanduser()
            if not site.is_file():
                continue
            logger.info("Found site-specific configuration: %s", site)
            try:
                self.load(site)
            except ConfigError as e:
                logger.warning("Failed to merge site-specific configuration %s: %s", site, e)
                continue
            loaded.append(site)
        return loaded

    def apply_env_overrides(self, environ: Mapping[str, str]) -> None:
        """Apply DI_* environment variables as runtime overrides."""
        for var, key in ENV_OVERRIDES.items():
            value = environ.get(var)
            if value is not None and value != "":
                logger.debug("Environment override %s → %s", var, key)
                self.set(key, _coerce_env(value))
        if environ.get("DI_DEBUG", "").strip().lower() in _TRUE:
            self.set("installer.log_level", "DEBUG")

    def check_schema(self, schema_path: Path) -> list[str]:
        """Validate the merged document; violations become warnings."""
        schema_path = Path(schema_path)
        if not schema_path.is_file():
            logger.debug("Schema validation skipped (schema not found: %s)", schema_path)
            return []
        try:
            schema = read_document(schema_path)
        except ConfigError as e:
            logger.warning("Cannot read configuration schema: %s", e)
            return []

        warnings = validate(self.document, schema)
        if warnings:
            logger.warning("Configuration validation failed, but continuing anyway")
            for w in warnings:
                logger.warning("  %s", w)
        self.schema_warnings = warnings
        return warnings

    # ── Access ──────────────────────────────────────────────────

    @property
    def document(self) -> dict[str, Any]:
        """The merged document including runtime overrides."""
        doc = copy.deepcopy(self._document)
        for key, value in self._runtime.items():
            doc = merge(doc, _nest(key, value))
        return doc

    def get(self, key: str, default: Any = None) -> Any:
        """Value at a dotted key, or ``default`` if unset."""
        value = self._flat.get(key)
        if value is None:
            logger.debug("Configuration key not found: %s, using default: %r", key, default)
            return default
        return value

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self.get(key, default)
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
        logger.debug("Invalid boolean value for %s: %r, using default: %s", key, value, default)
        return default

    def get_int(self, key: str, default: int = 0) -> int:
        value = self.get(key, default)
        if isinstance(value, bool):
            return default
        if isinstance(value, int):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
        text = str(value).strip()
        if re.fullmatch(r"\d+", text):
            return int(text)
        logger.debug("Invalid integer value for %s: %r, using default: %s", key, value, default)
        return default

    def get_float(self, key: str, default: float = 0.0) -> float:
        value = self.get(key, default)
        try:
            return float(value)
        except (TypeError, ValueError):
            logger.debug("Invalid number for %s: %r, using default: %s", key, value, default)
            return default

    def get_array(self, key: str, default: list[Any] | None = None) -> list[Any]:
        """Collect ``key.N`` values ordered by N."""
        pattern = re.compile(rf"^{re.escape(key)}\.(\d+)$")
        indexed = []
        for flat_key, value in self._flat.items():
            m = pattern.match(flat_key)
            if m:
                indexed.append((int(m.group(1)), value))
        if not indexed:
            return list(default) if default is not None else []
        return [value for _, value in sorted(indexed)]

    def get_path(self, key: str, default: str = "") -> Path:
        """A path-valued key with ``~`` expanded."""
        return Path(str(self.get(key, default))).expanduser()

    def set(self, key: str, value: Any) -> None:
        """Set a runtime override (never written back to disk)."""
        self._runtime[key] = value
        self._apply_flat(key, value)
        logger.debug("Set configuration: %s=%r", key, value)

    def items(self, pattern: str | None = None) -> list[tuple[str, Any]]:
        """Sorted (key, value) pairs, optionally filtered by a regex."""
        rx = re.compile(pattern) if pattern else None
        return sorted(
            (k, v) for k, v in self._flat.items() if rx is None or rx.search(k)
        )

    def as_env(self, prefix: str = "DI_CFG_") -> dict[str, str]:
        """Flattened keys as environment variables for collaborators."""
        env = {}
        for key, value in self._flat.items():
            name = prefix + re.sub(r"[^A-Za-z0-9]", "_", key).upper()
            if isinstance(value, bool):
                env[name] = "true" if value else "false"
            else:
                env[name] = "" if value is None else str(value)
        return env

    def __contains__(self, key: str) -> bool:
        return self._flat.get(key) is not None

    def __len__(self) -> int:
        return len(self._flat)

    # ── Internals ───────────────────────────────────────────────

    def _reindex(self) -> None:
        self._flat = flatten(self._document)
        for key, value in self._runtime.items():
            self._apply_flat(key, value)

    def _apply_flat(self, key: str, value: Any) -> None:
        nested_prefix = key + "."
        for existing in [k for k in self._flat if k == key or k.startswith(nested_prefix)]:
            del self._flat[existing]
        if isinstance(value, (Mapping, list)):
            self._flat.update(flatten(value, key))
        else:
            self._flat[key] = value


def _nest(key: str, value: Any) -> dict[str, Any]:
    """``"a.b.c", v`` → ``{"a": {"b": {"c": v}}}``."""
    node: Any = value
    for part in reversed(key.split(".")):
        node = {part: node}
    return node


def _coerce_env(value: str) -> Any:
    """Environment strings → bool/int/float where they look like one."""
    text = value.strip()
    if text.lower() in ("true", "false"):
        return text.lower() == "true"
    if re.fullmatch(r"-?\d+", text):
        return int(text)
    if re.fullmatch(r"-?\d+\.\d+", text):
        return float(text)
    return value
