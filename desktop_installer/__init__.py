"""Desktop application installer — orchestration engine and CLI."""

__version__ = "3.1.0"
