"""
Remote chain service clients.
"""

from shieldwallet.chain.base import ChainService
from shieldwallet.chain.lightwalletd import LightwalletdClient
from shieldwallet.chain.models import (
    BroadcastResult,
    CompactBlock,
    CompactOutput,
    CompactSpend,
    CompactTx,
    TreeState,
)

__all__ = [
    "BroadcastResult",
    "ChainService",
    "CompactBlock",
    "CompactOutput",
    "CompactSpend",
    "CompactTx",
    "LightwalletdClient",
    "TreeState",
]
