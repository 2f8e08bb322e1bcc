"""
fleet-secrets — package root

File: src/fleet_secrets/__init__.py
Last updated: 2026-10-19

Purpose
- Per-target secret resolution for a fleet of independently keyed robots.

What should be included in this file
- Package docstring describing fleet-secrets at a high level.
- Version export and minimal public API surface (keep small).
- Import boundary rules: avoid importing heavy submodules at import time.

Functional requirements
- Must not have side effects at import time (no config loading, no logging init).
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
