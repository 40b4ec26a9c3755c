"""
shieldcore - Shared plumbing for the shielded wallet components

Provides network parameters, settings, paths and logging setup.
"""

from shieldcore.models import NetworkType, ShieldedPool
from shieldcore.version import __version__

__all__ = [
    "NetworkType",
    "ShieldedPool",
    "__version__",
]
