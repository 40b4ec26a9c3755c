"""
Wallet data models.
"""

from __future__ import annotations

from pydantic import Field
from pydantic.dataclasses import dataclass
from shieldcore.models import ShieldedPool, zatoshis_to_coins


@dataclass
class Account:
    """The single shielded account stored in a user's wallet database."""

    account_id: int
    viewing_key: str
    birthday_height: int
    created_at: str


@dataclass
class TreeCheckpoint:
    """Commitment tree state of one pool as of the end of ``height``."""

    pool: ShieldedPool
    height: int
    tree_size: int
    root: str  # hex
    marks_removed: list[int] = Field(default_factory=list)


@dataclass
class ReceivedNote:
    """A decrypted output belonging to the account."""

    note_id: int
    txid: str
    pool: ShieldedPool
    output_index: int
    value: int  # zatoshis
    nullifier: str  # hex
    tree_position: int
    is_change: bool
    mined_height: int | None = None
    memo: bytes | None = None
    spent_in_txid: str | None = None

    @property
    def is_spent(self) -> bool:
        return self.spent_in_txid is not None


@dataclass
class SentNote:
    """An outgoing payment authored by the account."""

    txid: str
    pool: ShieldedPool
    output_index: int
    to_address: str
    value: int
    memo: str | None = None


@dataclass
class WalletTransaction:
    """A chain transaction touching the account, mined or pending."""

    txid: str
    mined_height: int | None = None
    tx_index: int | None = None
    fee: int | None = None
    created_at: str | None = None
    expiry_height: int | None = None


# Batch results produced by the scanner and persisted atomically


@dataclass
class DiscoveredNote:
    txid: str
    pool: ShieldedPool
    output_index: int
    value: int
    diversifier: bytes
    rseed: bytes
    commitment: bytes
    nullifier: bytes
    tree_position: int
    is_change: bool = False


@dataclass
class DetectedSpend:
    """A nullifier of one of our notes revealed by ``spending_txid``."""

    nullifier: bytes
    spending_txid: str
    pool: ShieldedPool
    tree_position: int


@dataclass
class ScannedTransaction:
    txid: str
    mined_height: int
    tx_index: int
    fee: int | None = None
    block_time: int | None = None


@dataclass
class BatchCheckpoint:
    pool: ShieldedPool
    height: int
    frontier: bytes


@dataclass
class BatchScanResult:
    """Everything one batch adds to the store, applied as a unit."""

    start_height: int
    end_height: int
    end_block_hash: str
    transactions: list[ScannedTransaction] = Field(default_factory=list)
    notes: list[DiscoveredNote] = Field(default_factory=list)
    spends: list[DetectedSpend] = Field(default_factory=list)
    checkpoints: list[BatchCheckpoint] = Field(default_factory=list)

    @property
    def block_count(self) -> int:
        return self.end_height - self.start_height + 1


@dataclass
class ScanSummary:
    """Work done by one scan invocation."""

    start_height: int
    end_height: int
    blocks_scanned: int = 0
    notes_discovered: int = 0
    batches: int = 0

    @property
    def caught_up_already(self) -> bool:
        return self.blocks_scanned == 0


@dataclass
class WalletBalance:
    """Unspent note totals after a scan."""

    sapling: int
    orchard: int
    last_synced_height: int | None
    chain_tip: int
    blocks_scanned: int = 0
    notes_found: int = 0

    @property
    def total(self) -> int:
        return self.sapling + self.orchard

    @property
    def synced(self) -> bool:
        return self.last_synced_height is not None and self.last_synced_height >= self.chain_tip

    @property
    def formatted(self) -> str:
        return zatoshis_to_coins(self.total)
