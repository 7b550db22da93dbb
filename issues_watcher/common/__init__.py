"""Shared helpers used across the watcher packages."""
