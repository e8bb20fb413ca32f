"""Adapters — bindings for external collaborators.

Public re-exports for convenient access.
"""

from desktop_installer.adapters.base import Adapter, ExecutionContext
from desktop_installer.adapters.mock import MockAdapter
from desktop_installer.adapters.registry import AdapterRegistry

__all__ = [
    "Adapter",
    "AdapterRegistry",
    "ExecutionContext",
    "MockAdapter",
]
