"""
One-directional projection of wallet databases into the relational mirror.

The caller reads a StoreSnapshot from the embedded store first; this module
only ever sees that in-memory copy, so the wallet database is not held open
during the (network-bound) relational writes. All writes are upserts on the
natural keys, which makes re-running a sync with unchanged data a no-op.
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from loguru import logger
from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from shieldwallet.mirror.database import (
    create_mirror_engine,
    create_session_factory,
    init_mirror_schema,
)
from shieldwallet.mirror.models import MirrorReceivedNote, MirrorSentNote, MirrorTransaction
from shieldwallet.wallet.locks import AccountLockRegistry
from shieldwallet.wallet.store import StoreSnapshot

UPSERT_CHUNK_SIZE = 500


@dataclass
class MirrorSyncStats:
    transactions: int = 0
    received_notes: int = 0
    sent_notes: int = 0
    unresolved_spends: int = 0


def _chunks(rows: Sequence[dict[str, Any]], size: int) -> Iterator[Sequence[dict[str, Any]]]:
    for offset in range(0, len(rows), size):
        yield rows[offset : offset + size]


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


class MirrorSynchronizer:
    """
    Upserts wallet rows into the relational mirror, keyed by user.

    Syncs and clears of the same user are serialized. ``clear_user`` bumps
    the user's generation; a sync started from a snapshot taken before the
    clear carries the old generation and is dropped instead of re-inserting
    rows of the discarded history.
    """

    def __init__(self, engine: AsyncEngine, lock_prune_threshold: int = 1024):
        self.engine = engine
        self.session_factory = create_session_factory(engine)
        self.locks = AccountLockRegistry(prune_threshold=lock_prune_threshold)
        # survives lock pruning; only users that were cleared have an entry
        self._generations: dict[str, int] = {}

    @classmethod
    async def connect(cls, database_url: str) -> MirrorSynchronizer:
        engine = create_mirror_engine(database_url)
        await init_mirror_schema(engine)
        return cls(engine)

    async def close(self) -> None:
        await self.engine.dispose()

    def generation(self, user_id: str) -> int:
        return self._generations.get(user_id, 0)

    def _insert(self, model: type) -> Any:
        if self.engine.dialect.name == "postgresql":
            return pg_insert(model)
        return sqlite_insert(model)

    async def sync(
        self, user_id: str, snapshot: StoreSnapshot, generation: int | None = None
    ) -> MirrorSyncStats | None:
        """
        Project ``snapshot`` into the mirror.

        Returns None when the snapshot is stale, i.e. the user was cleared
        after ``generation`` was read.
        """
        async with self.locks.hold(user_id):
            if generation is not None and generation != self.generation(user_id):
                logger.debug(f"Dropping stale mirror snapshot for {user_id}")
                return None

            stats = MirrorSyncStats()
            async with self.session_factory() as session, session.begin():
                tx_ids = await self._upsert_transactions(session, user_id, snapshot, stats)
                await self._upsert_received_notes(session, user_id, snapshot, tx_ids, stats)
                await self._upsert_sent_notes(session, user_id, snapshot, tx_ids, stats)

        logger.debug(
            f"Mirrored {user_id}: {stats.transactions} transactions, "
            f"{stats.received_notes} received notes, {stats.sent_notes} sent notes"
        )
        if stats.unresolved_spends:
            logger.debug(f"{stats.unresolved_spends} spend references left unresolved")
        return stats

    async def _upsert_transactions(
        self,
        session: AsyncSession,
        user_id: str,
        snapshot: StoreSnapshot,
        stats: MirrorSyncStats,
    ) -> dict[str, int]:
        rows = [
            {
                "user_id": user_id,
                "txid": tx.txid,
                "block_height": tx.mined_height,
                "tx_index": tx.tx_index,
                "fee_zatoshis": tx.fee,
                "expiry_height": tx.expiry_height,
                "created_at": _parse_timestamp(tx.created_at),
            }
            for tx in snapshot.transactions
        ]
        for chunk in _chunks(rows, UPSERT_CHUNK_SIZE):
            stmt = self._insert(MirrorTransaction).values(list(chunk))
            stmt = stmt.on_conflict_do_update(
                index_elements=["user_id", "txid"],
                set_={
                    "block_height": func.coalesce(
                        stmt.excluded.block_height, MirrorTransaction.block_height
                    ),
                    "tx_index": func.coalesce(stmt.excluded.tx_index, MirrorTransaction.tx_index),
                    "fee_zatoshis": func.coalesce(
                        stmt.excluded.fee_zatoshis, MirrorTransaction.fee_zatoshis
                    ),
                    "expiry_height": func.coalesce(
                        stmt.excluded.expiry_height, MirrorTransaction.expiry_height
                    ),
                },
            )
            await session.execute(stmt)
        stats.transactions = len(rows)

        result = await session.execute(
            select(MirrorTransaction.txid, MirrorTransaction.id).where(
                MirrorTransaction.user_id == user_id
            )
        )
        return {txid: row_id for txid, row_id in result.all()}

    async def _upsert_received_notes(
        self,
        session: AsyncSession,
        user_id: str,
        snapshot: StoreSnapshot,
        tx_ids: dict[str, int],
        stats: MirrorSyncStats,
    ) -> None:
        rows = []
        for note in snapshot.received_notes:
            spent_in = tx_ids.get(note.spent_in_txid) if note.spent_in_txid else None
            if note.spent_in_txid and spent_in is None:
                stats.unresolved_spends += 1
            rows.append(
                {
                    "user_id": user_id,
                    "transaction_id": tx_ids[note.txid],
                    "note_index": note.output_index,
                    "pool": note.pool.value,
                    "value_zatoshis": note.value,
                    "memo": note.memo,
                    "is_change": note.is_change,
                    "spent_in_tx_id": spent_in,
                }
            )

        for chunk in _chunks(rows, UPSERT_CHUNK_SIZE):
            stmt = self._insert(MirrorReceivedNote).values(list(chunk))
            stmt = stmt.on_conflict_do_update(
                index_elements=["user_id", "transaction_id", "note_index"],
                set_={
                    "value_zatoshis": stmt.excluded.value_zatoshis,
                    "is_change": stmt.excluded.is_change,
                    "memo": func.coalesce(stmt.excluded.memo, MirrorReceivedNote.memo),
                    "spent_in_tx_id": func.coalesce(
                        stmt.excluded.spent_in_tx_id, MirrorReceivedNote.spent_in_tx_id
                    ),
                },
            )
            await session.execute(stmt)
        stats.received_notes = len(rows)

    async def _upsert_sent_notes(
        self,
        session: AsyncSession,
        user_id: str,
        snapshot: StoreSnapshot,
        tx_ids: dict[str, int],
        stats: MirrorSyncStats,
    ) -> None:
        rows = [
            {
                "user_id": user_id,
                "transaction_id": tx_ids[note.txid],
                "note_index": note.output_index,
                "pool": note.pool.value,
                "to_address": note.to_address,
                "value_zatoshis": note.value,
                "memo": note.memo,
            }
            for note in snapshot.sent_notes
        ]
        for chunk in _chunks(rows, UPSERT_CHUNK_SIZE):
            stmt = self._insert(MirrorSentNote).values(list(chunk))
            stmt = stmt.on_conflict_do_update(
                index_elements=["user_id", "transaction_id", "note_index"],
                set_={
                    "to_address": stmt.excluded.to_address,
                    "value_zatoshis": stmt.excluded.value_zatoshis,
                    "memo": stmt.excluded.memo,
                },
            )
            await session.execute(stmt)
        stats.sent_notes = len(rows)

    async def clear_user(self, user_id: str) -> int:
        """Delete every mirrored row of ``user_id``. Returns deleted transactions."""
        async with self.locks.hold(user_id):
            self._generations[user_id] = self.generation(user_id) + 1
            async with self.session_factory() as session, session.begin():
                await session.execute(
                    delete(MirrorReceivedNote).where(MirrorReceivedNote.user_id == user_id)
                )
                await session.execute(
                    delete(MirrorSentNote).where(MirrorSentNote.user_id == user_id)
                )
                result = await session.execute(
                    delete(MirrorTransaction).where(MirrorTransaction.user_id == user_id)
                )
        logger.info(f"Cleared {result.rowcount} mirrored transactions for {user_id}")
        return result.rowcount
