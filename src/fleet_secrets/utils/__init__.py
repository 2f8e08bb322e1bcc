"""Shared filesystem and hashing helpers."""
