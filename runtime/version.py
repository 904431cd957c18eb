"""Runtime version metadata for the house points board.

This module is import-safe and exposes version identifiers for the
entrypoint and log banner without executing side effects on import.
"""

from __future__ import annotations

PROJECT_NAME = "House Points Board"
VERSION = "v1.2.0"
BUILD = "2026.10"

__all__ = [
    "PROJECT_NAME",
    "VERSION",
    "BUILD",
    "as_string",
]


def as_string() -> str:
    """Return a concise version string."""

    return f"{PROJECT_NAME} {VERSION} (Build {BUILD})"
