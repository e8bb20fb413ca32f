"""Top-level use cases invoked by the CLI."""
