"""Core engine: configuration, reliability, services, orchestration."""
