"""Shell-level adapters: external commands and filesystem operations."""
