"""
Shared fixtures for shieldwallet tests.

``FakeChain`` is an in-memory chain service: blocks are empty unless a test
places transactions at a height, tree sizes in the block metadata follow the
outputs placed so far and tree states are rebuilt by replaying every
commitment up to the requested height.
"""

from __future__ import annotations

import os
from collections.abc import AsyncIterator, Iterator
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest
import pytest_asyncio
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey
from shieldcore.cli_common import ResolvedSyncSettings
from shieldcore.models import NetworkType, ShieldedPool

from shieldwallet.chain.base import ChainService
from shieldwallet.chain.models import (
    BroadcastResult,
    ChainMetadata,
    CompactBlock,
    CompactOutput,
    CompactSpend,
    CompactTx,
    TreeState,
)
from shieldwallet.errors import ChainServiceError
from shieldwallet.wallet.keys import AccountKeys
from shieldwallet.wallet.note_encryption import encrypt_note
from shieldwallet.wallet.service import ShieldWalletService, WalletCredentials
from shieldwallet.wallet.store import WalletStore
from shieldwallet.wallet.transaction import ShieldedTransaction
from shieldwallet.wallet.tree import Frontier

TEST_MNEMONIC = (
    "abandon abandon abandon abandon abandon abandon "
    "abandon abandon abandon abandon abandon about"
)
OTHER_MNEMONIC = "legal winner thank year wave sausage worth useful legal winner thank yellow"
TEST_BIRTHDAY = 1000


def _random_pk_d() -> bytes:
    return (
        X25519PrivateKey.generate()
        .public_key()
        .public_bytes(serialization.Encoding.Raw, serialization.PublicFormat.Raw)
    )


class FakeChain(ChainService):
    def __init__(self, tip: int, network: NetworkType = NetworkType.MAINNET):
        self.tip = tip
        self.network = network
        self.txs: dict[int, list[CompactTx]] = {}
        self.pending: list[CompactTx] = []
        self.tip_calls = 0
        self.tree_state_requests: list[int] = []
        self.streamed_ranges: list[tuple[int, int]] = []
        self.broadcasts: list[bytes] = []
        self.rejection: tuple[int, str] | None = None
        self.tip_failures = 0
        self.stream_failures = 0
        self.fail_stream_at: int | None = None
        self.tree_size_skew = 0
        self.closed = False

    # -- test helpers ---------------------------------------------------

    def add_tx(
        self,
        height: int,
        outputs: list[CompactOutput] | None = None,
        spends: list[CompactSpend] | None = None,
        fee: int | None = 10_000,
        txid: str | None = None,
    ) -> CompactTx:
        block_txs = self.txs.setdefault(height, [])
        tx = CompactTx(
            index=len(block_txs),
            txid=txid or os.urandom(32).hex(),
            fee=fee,
            outputs=outputs or [],
            spends=spends or [],
        )
        block_txs.append(tx)
        return tx

    def note_output(
        self, keys: AccountKeys, pool: ShieldedPool, value: int
    ) -> CompactOutput:
        vk = keys.viewing_key[pool]
        note = encrypt_note(pool, vk.diversifier, vk.pk_d, value)
        return CompactOutput(pool=pool, cmu=note.cmu, epk=note.epk, ciphertext=note.ciphertext)

    def foreign_output(self, pool: ShieldedPool, value: int = 1_000) -> CompactOutput:
        note = encrypt_note(pool, os.urandom(11), _random_pk_d(), value)
        return CompactOutput(pool=pool, cmu=note.cmu, epk=note.epk, ciphertext=note.ciphertext)

    def pay(
        self, height: int, keys: AccountKeys, value: int, pool: ShieldedPool = ShieldedPool.ORCHARD
    ) -> CompactTx:
        """Mine a transaction paying ``value`` to the account at ``height``."""
        return self.add_tx(height, outputs=[self.note_output(keys, pool, value)])

    def mine(self) -> int:
        """Mine pending broadcasts into a new block on top of the tip."""
        self.tip += 1
        for tx in self.pending:
            self.add_tx(
                self.tip, outputs=tx.outputs, spends=tx.spends, fee=tx.fee, txid=tx.txid
            )
        self.pending.clear()
        return self.tip

    def _commitments(self, pool: ShieldedPool, up_to: int) -> list[bytes]:
        return [
            output.cmu
            for height in sorted(h for h in self.txs if h <= up_to)
            for tx in self.txs[height]
            for output in tx.outputs
            if output.pool is pool
        ]

    def block(self, height: int) -> CompactBlock:
        return CompactBlock(
            height=height,
            hash=f"{height:064x}",
            prev_hash=f"{height - 1:064x}",
            time=1_700_000_000 + height * 75,
            vtx=list(self.txs.get(height, [])),
            chain_metadata=ChainMetadata(
                sapling_tree_size=len(self._commitments(ShieldedPool.SAPLING, height))
                + self.tree_size_skew,
                orchard_tree_size=len(self._commitments(ShieldedPool.ORCHARD, height)),
            ),
        )

    # -- ChainService ---------------------------------------------------

    async def get_chain_tip(self) -> int:
        self.tip_calls += 1
        if self.tip_failures > 0:
            self.tip_failures -= 1
            raise ChainServiceError("get_chain_tip", "connection refused")
        return self.tip

    async def get_tree_state(self, height: int) -> TreeState:
        self.tree_state_requests.append(height)
        frontiers = {}
        for pool in ShieldedPool:
            frontier = Frontier()
            for cmu in self._commitments(pool, height):
                frontier.append(cmu)
            frontiers[pool] = frontier
        return TreeState(
            network=self.network.value,
            height=height,
            hash=f"{height:064x}",
            sapling_tree=frontiers[ShieldedPool.SAPLING].to_hex(),
            orchard_tree=frontiers[ShieldedPool.ORCHARD].to_hex(),
        )

    async def stream_blocks(
        self, start_height: int, end_height: int
    ) -> AsyncIterator[CompactBlock]:
        self.streamed_ranges.append((start_height, end_height))
        if self.stream_failures > 0:
            self.stream_failures -= 1
            raise ChainServiceError("stream_blocks", "reset by peer", start_height, end_height)
        if self.fail_stream_at is not None and start_height >= self.fail_stream_at:
            raise ChainServiceError("stream_blocks", "timed out", start_height, end_height)
        for height in range(start_height, end_height + 1):
            yield self.block(height)

    async def broadcast(self, raw_tx: bytes) -> BroadcastResult:
        self.broadcasts.append(raw_tx)
        if self.rejection is not None:
            code, reason = self.rejection
            return BroadcastResult(error_code=code, error_message=reason)
        tx = ShieldedTransaction.from_bytes(raw_tx)
        self.pending.append(
            CompactTx(
                index=0,
                txid=tx.txid,
                fee=tx.fee,
                spends=[CompactSpend(pool=s.pool, nf=s.nullifier) for s in tx.spends],
                outputs=[
                    CompactOutput(pool=o.pool, cmu=o.cmu, epk=o.epk, ciphertext=o.ciphertext)
                    for o in tx.outputs
                ],
            )
        )
        return BroadcastResult(error_code=0, error_message=tx.txid)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture(scope="session")
def account_keys() -> AccountKeys:
    return AccountKeys.from_mnemonic(TEST_MNEMONIC, NetworkType.MAINNET)


@pytest.fixture(scope="session")
def other_keys() -> AccountKeys:
    return AccountKeys.from_mnemonic(OTHER_MNEMONIC, NetworkType.MAINNET)


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain(tip=1120)


@pytest.fixture
def chain_factory() -> type[FakeChain]:
    return FakeChain


@pytest.fixture
def store(tmp_path: Path) -> Iterator[WalletStore]:
    wallet_store = WalletStore.open(tmp_path / "wallet_test.db")
    yield wallet_store
    wallet_store.close()


@pytest.fixture
def credentials() -> WalletCredentials:
    return WalletCredentials(user_id="alice", mnemonic=TEST_MNEMONIC)


@pytest.fixture
def sync_settings(tmp_path: Path) -> ResolvedSyncSettings:
    return ResolvedSyncSettings(
        network=NetworkType.MAINNET,
        lightwalletd_url="http://lightwalletd.invalid",
        connect_timeout=1.0,
        read_timeout=1.0,
        birthday_height=TEST_BIRTHDAY,
        batch_size=50,
        scan_retry_attempts=3,
        scan_retry_base_delay=0.0,
        worker_threads=2,
        data_dir=tmp_path,
        mirror_url=f"sqlite+aiosqlite:///{tmp_path / 'mirror.db'}",
    )


@pytest.fixture
def executor() -> Iterator[ThreadPoolExecutor]:
    pool = ThreadPoolExecutor(max_workers=2)
    yield pool
    pool.shutdown(wait=True)


@pytest_asyncio.fixture
async def service(
    sync_settings: ResolvedSyncSettings, chain: FakeChain
) -> AsyncIterator[ShieldWalletService]:
    """Wallet service without a mirror."""
    wallet_service = ShieldWalletService(sync_settings, chain)
    yield wallet_service
    await wallet_service.close()
