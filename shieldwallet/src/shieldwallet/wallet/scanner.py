"""
Blockchain scanner.

Brings an account's embedded store up to the chain tip in fixed-size batches:

    resume -> download batch -> decrypt batch -> persist batch -> ... -> caught up

Each batch is persisted atomically (notes, spends, transactions, the
checkpoints of both pools and the scan cursor), so an interrupted scan loses
at most the batch in flight and the next invocation resumes right after the
last persisted block.
"""

from __future__ import annotations

import asyncio
import functools
from collections.abc import Callable
from concurrent.futures import Executor

from loguru import logger
from shieldcore.models import ShieldedPool

from shieldwallet.chain.base import ChainService
from shieldwallet.errors import ChainServiceError, CheckpointConflictError, StoreError
from shieldwallet.wallet.block_cache import BlockSource, InMemoryBlockCache
from shieldwallet.wallet.keys import FullViewingKey
from shieldwallet.wallet.models import (
    Account,
    BatchCheckpoint,
    BatchScanResult,
    DetectedSpend,
    DiscoveredNote,
    ScannedTransaction,
    ScanSummary,
)
from shieldwallet.wallet.note_encryption import try_decrypt_note
from shieldwallet.wallet.store import WalletStore
from shieldwallet.wallet.tree import Frontier

ProgressCallback = Callable[[int, int], None]


def batch_ranges(start_height: int, end_height: int, batch_size: int) -> list[tuple[int, int]]:
    """Split [start_height, end_height] into contiguous ranges of at most batch_size blocks."""
    if batch_size < 1:
        raise ValueError(f"Batch size must be positive, got {batch_size}")
    return [
        (batch_start, min(batch_start + batch_size - 1, end_height))
        for batch_start in range(start_height, end_height + 1, batch_size)
    ]


def scan_cached_blocks(
    source: BlockSource,
    start_height: int,
    end_height: int,
    viewing_key: FullViewingKey,
    frontiers: dict[ShieldedPool, Frontier],
    tracked_nullifiers: dict[bytes, tuple[ShieldedPool, int]],
) -> BatchScanResult:
    """
    Trial-decrypt every output of a downloaded batch.

    CPU bound; runs in a worker. ``frontiers`` must describe the trees as of
    the end of ``start_height - 1``; the inputs are not mutated.

    Raises:
        CheckpointConflictError: A block's reported tree size disagrees with
            the frontier built on top of the stored checkpoint.
    """
    trees = {pool: frontier.copy() for pool, frontier in frontiers.items()}
    tracked = dict(tracked_nullifiers)

    result = BatchScanResult(start_height=start_height, end_height=end_height, end_block_hash="")
    expected_height = start_height

    for block in source.blocks_from(start_height, limit=end_height - start_height + 1):
        if block.height != expected_height:
            raise ChainServiceError(
                "scan", f"missing block {expected_height}", start_height, end_height
            )
        expected_height += 1

        for tx in block.vtx:
            spends: list[DetectedSpend] = []
            for spend in tx.spends:
                owned = tracked.pop(spend.nf, None)
                if owned is not None:
                    pool, position = owned
                    spends.append(
                        DetectedSpend(
                            nullifier=spend.nf,
                            spending_txid=tx.txid,
                            pool=pool,
                            tree_position=position,
                        )
                    )

            notes: list[DiscoveredNote] = []
            for output_index, output in enumerate(tx.outputs):
                position = trees[output.pool].append(output.cmu)
                vk = viewing_key[output.pool]
                note = try_decrypt_note(vk, output.cmu, output.epk, output.ciphertext)
                if note is None:
                    continue
                nullifier = vk.nullifier(output.cmu, position)
                notes.append(
                    DiscoveredNote(
                        txid=tx.txid,
                        pool=output.pool,
                        output_index=output_index,
                        value=note.value,
                        diversifier=note.diversifier,
                        rseed=note.rseed,
                        commitment=output.cmu,
                        nullifier=nullifier,
                        tree_position=position,
                        is_change=bool(spends),
                    )
                )
                tracked[nullifier] = (output.pool, position)

            if spends or notes:
                result.transactions.append(
                    ScannedTransaction(
                        txid=tx.txid,
                        mined_height=block.height,
                        tx_index=tx.index,
                        fee=tx.fee,
                        block_time=block.time or None,
                    )
                )
                result.spends.extend(spends)
                result.notes.extend(notes)

        if block.chain_metadata is not None:
            for pool, tree in trees.items():
                reported = block.chain_metadata.tree_size(pool)
                if reported != tree.size:
                    raise CheckpointConflictError(
                        pool.value,
                        block.height,
                        f"chain reports {reported} commitments, local tree has {tree.size}",
                    )

        result.end_block_hash = block.hash

    if expected_height != end_height + 1:
        raise ChainServiceError(
            "scan", f"batch ended at block {expected_height - 1}", start_height, end_height
        )

    result.checkpoints = [
        BatchCheckpoint(pool=pool, height=end_height, frontier=tree.to_bytes())
        for pool, tree in trees.items()
    ]
    return result


class BlockchainScanner:
    """
    Drives one account's store to the chain tip.

    The tip is read once per ``scan`` call; blocks mined while scanning are
    picked up by the next call.
    """

    def __init__(
        self,
        chain: ChainService,
        batch_size: int = 50_000,
        executor: Executor | None = None,
        on_progress: ProgressCallback | None = None,
    ):
        if batch_size < 1:
            raise ValueError(f"Batch size must be positive, got {batch_size}")
        self.chain = chain
        self.batch_size = batch_size
        self.executor = executor
        self.on_progress = on_progress

    def resume_height(self, store: WalletStore, account: Account) -> int:
        """First height the next batch must start at."""
        try:
            cursor = store.last_scanned_height()
        except StoreError as e:
            logger.warning(f"Tree height query failed, assuming first scan: {e}")
            cursor = None
        return account.birthday_height if cursor is None else cursor + 1

    async def scan(
        self, store: WalletStore, account: Account, viewing_key: FullViewingKey
    ) -> ScanSummary:
        chain_tip = await self.chain.get_chain_tip()
        start_height = await asyncio.to_thread(self.resume_height, store, account)

        if start_height > chain_tip:
            logger.debug(f"Already caught up at {start_height - 1} (tip {chain_tip})")
            return ScanSummary(start_height=start_height, end_height=chain_tip)

        ranges = batch_ranges(start_height, chain_tip, self.batch_size)
        logger.info(
            f"Scanning blocks {start_height}..{chain_tip} "
            f"({chain_tip - start_height + 1} blocks, {len(ranges)} batches)"
        )

        summary = ScanSummary(start_height=start_height, end_height=chain_tip)
        for batch_start, batch_end in ranges:
            result = await self.scan_batch(store, account, viewing_key, batch_start, batch_end)
            await asyncio.to_thread(store.persist_batch, account, result)

            summary.batches += 1
            summary.blocks_scanned += result.block_count
            summary.notes_discovered += len(result.notes)
            logger.debug(
                f"Persisted batch [{batch_start}, {batch_end}]: "
                f"{len(result.notes)} notes, {len(result.spends)} spends"
            )
            if self.on_progress is not None:
                self.on_progress(batch_end, chain_tip)

        logger.info(
            f"Scan complete at {chain_tip}: {summary.blocks_scanned} blocks, "
            f"{summary.notes_discovered} notes found"
        )
        return summary

    @staticmethod
    def _batch_state(
        store: WalletStore, batch_start: int
    ) -> tuple[dict[ShieldedPool, Frontier], dict[bytes, tuple[ShieldedPool, int]]]:
        frontiers: dict[ShieldedPool, Frontier] = {}
        for pool in ShieldedPool:
            frontier = store.frontier_at(pool, batch_start - 1)
            if frontier is None:
                raise CheckpointConflictError(
                    pool.value, batch_start - 1, "no checkpoint to continue scanning from"
                )
            frontiers[pool] = frontier
        return frontiers, store.tracked_nullifiers()

    async def scan_batch(
        self,
        store: WalletStore,
        account: Account,
        viewing_key: FullViewingKey,
        batch_start: int,
        batch_end: int,
    ) -> BatchScanResult:
        """Download and decrypt one batch without persisting it."""
        frontiers, tracked = await asyncio.to_thread(self._batch_state, store, batch_start)

        cache = InMemoryBlockCache()
        async for block in self.chain.stream_blocks(batch_start, batch_end):
            cache.insert(block)
        logger.debug(f"Downloaded {len(cache)} blocks [{batch_start}, {batch_end}]")

        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self.executor,
            functools.partial(
                scan_cached_blocks,
                cache,
                batch_start,
                batch_end,
                viewing_key,
                frontiers,
                tracked,
            ),
        )
