"""
Packaged data documents — the default configuration and its schema.

Usage::

    from desktop_installer.core.data import DEFAULT_CONFIG_PATH, SCHEMA_PATH
"""

from __future__ import annotations

from pathlib import Path

_DATA_DIR = Path(__file__).parent

DEFAULT_CONFIG_PATH = _DATA_DIR / "default.json"
SCHEMA_PATH = _DATA_DIR / "schema.json"
