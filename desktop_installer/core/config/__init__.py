"""Configuration store."""
