"""
Base class for remote chain services.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

from shieldwallet.chain.models import BroadcastResult, CompactBlock, TreeState


class ChainService(ABC):
    """
    Remote service that serves compact blocks and accepts transactions.

    Every method is a suspension point; implementations raise
    ChainServiceError for transport failures so callers can retry.
    """

    @abstractmethod
    async def get_chain_tip(self) -> int:
        """Height of the latest block."""

    @abstractmethod
    async def get_tree_state(self, height: int) -> TreeState:
        """Commitment tree frontiers as of the end of ``height``."""

    @abstractmethod
    def stream_blocks(self, start_height: int, end_height: int) -> AsyncIterator[CompactBlock]:
        """Compact blocks of the inclusive range, in height order."""

    @abstractmethod
    async def broadcast(self, raw_tx: bytes) -> BroadcastResult:
        """Submit a raw transaction."""

    async def close(self) -> None:
        """Release network resources."""
        return None
