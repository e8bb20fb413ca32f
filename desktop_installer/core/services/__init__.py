"""Download/cache manager and system validator."""
