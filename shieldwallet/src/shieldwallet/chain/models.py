"""
Compact block and tree state models exchanged with the remote chain service.

Binary fields travel as lowercase hex strings and are held as bytes.
"""

from __future__ import annotations

import string
from typing import TYPE_CHECKING, Annotated, Any

from pydantic import BaseModel, BeforeValidator, Field, PlainSerializer
from shieldcore.models import ShieldedPool

if TYPE_CHECKING:
    from shieldwallet.wallet.tree import Frontier


def _from_hex(value: Any) -> Any:
    if isinstance(value, str):
        return bytes.fromhex(value)
    return value


HexBytes = Annotated[bytes, BeforeValidator(_from_hex), PlainSerializer(lambda b: b.hex())]


class CompactSpend(BaseModel):
    pool: ShieldedPool
    nf: HexBytes = Field(..., min_length=32, max_length=32)


class CompactOutput(BaseModel):
    pool: ShieldedPool
    cmu: HexBytes = Field(..., min_length=32, max_length=32)
    epk: HexBytes = Field(..., min_length=32, max_length=32)
    ciphertext: HexBytes


class CompactTx(BaseModel):
    index: int = Field(..., ge=0)
    txid: str
    fee: int | None = None
    spends: list[CompactSpend] = Field(default_factory=list)
    outputs: list[CompactOutput] = Field(default_factory=list)


class ChainMetadata(BaseModel):
    """Commitment tree sizes at the end of the block."""

    sapling_tree_size: int = Field(..., ge=0)
    orchard_tree_size: int = Field(..., ge=0)

    def tree_size(self, pool: ShieldedPool) -> int:
        if pool is ShieldedPool.SAPLING:
            return self.sapling_tree_size
        return self.orchard_tree_size


class CompactBlock(BaseModel):
    height: int = Field(..., ge=0)
    hash: str
    prev_hash: str = ""
    time: int = 0
    vtx: list[CompactTx] = Field(default_factory=list)
    chain_metadata: ChainMetadata | None = None


class TreeState(BaseModel):
    """Serialized commitment tree frontiers as of the end of ``height``."""

    network: str
    height: int = Field(..., ge=0)
    hash: str = ""
    time: int = 0
    sapling_tree: str = ""
    orchard_tree: str = ""

    def frontier(self, pool: ShieldedPool) -> Frontier:
        from shieldwallet.wallet.tree import Frontier

        if pool is ShieldedPool.SAPLING:
            return Frontier.from_hex(self.sapling_tree)
        return Frontier.from_hex(self.orchard_tree)


class BroadcastResult(BaseModel):
    """
    Raw broadcast response.

    Success and failure share one field: with ``error_code == 0`` the message
    is the txid, otherwise it is the rejection reason.
    """

    error_code: int
    error_message: str

    @property
    def accepted(self) -> bool:
        return self.error_code == 0

    @property
    def txid(self) -> str | None:
        return self.error_message.strip() if self.accepted else None

    @property
    def reason(self) -> str:
        """Readable rejection reason. Some nodes hex-encode it."""
        message = self.error_message.strip()
        if (
            message
            and len(message) % 2 == 0
            and all(c in string.hexdigits for c in message)
        ):
            try:
                return bytes.fromhex(message).decode("utf-8")
            except UnicodeDecodeError:
                return message
        return message
