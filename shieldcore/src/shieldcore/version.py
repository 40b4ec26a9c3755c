"""
Centralized version management for Shield Wallet.

This is the single source of truth for the project version.
Both components inherit their version from here.
"""

from __future__ import annotations

# Format: MAJOR.MINOR.PATCH (Semantic Versioning)
__version__ = "0.4.0"

VERSION = __version__


def get_version() -> str:
    """Return the current version string."""
    return __version__


def get_version_tuple() -> tuple[int, int, int]:
    """Return the version as a tuple of (major, minor, patch)."""
    major, minor, patch = (int(part) for part in __version__.split("."))
    return (major, minor, patch)
