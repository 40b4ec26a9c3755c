"""
Embedded per-user wallet database.

One SQLite file per user holds the account, the commitment tree checkpoints
of both pools, received notes with their spends, sent notes, transactions and
the scan cursor. A WalletStore handle is owned by exactly one component at a
time (bootstrapper, scanner, proposer) and is never reopened behind the
owner's back: recovery destroys the handle and opens a new one explicitly.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from loguru import logger
from shieldcore.models import ShieldedPool

from shieldwallet.errors import AccountMismatchError, CheckpointConflictError, StoreError
from shieldwallet.wallet.models import (
    Account,
    BatchScanResult,
    ReceivedNote,
    SentNote,
    TreeCheckpoint,
    WalletTransaction,
)
from shieldwallet.wallet.tree import Frontier

SCHEMA = """
CREATE TABLE IF NOT EXISTS accounts (
    id INTEGER PRIMARY KEY,
    viewing_key TEXT NOT NULL UNIQUE,
    birthday_height INTEGER NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS tree_checkpoints (
    pool TEXT NOT NULL,
    height INTEGER NOT NULL,
    tree_size INTEGER NOT NULL,
    root BLOB NOT NULL,
    frontier BLOB NOT NULL,
    PRIMARY KEY (pool, height)
);

-- keyed by the height the spend was mined at, not by checkpoint
CREATE TABLE IF NOT EXISTS tree_checkpoint_marks_removed (
    pool TEXT NOT NULL,
    mark_removed_position INTEGER NOT NULL,
    spent_height INTEGER NOT NULL,
    PRIMARY KEY (pool, mark_removed_position)
);

CREATE TABLE IF NOT EXISTS scan_cursor (
    id INTEGER PRIMARY KEY CHECK (id = 0),
    height INTEGER NOT NULL,
    block_hash TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS transactions (
    id_tx INTEGER PRIMARY KEY,
    txid TEXT NOT NULL UNIQUE,
    mined_height INTEGER,
    tx_index INTEGER,
    fee INTEGER,
    created_at TEXT,
    expiry_height INTEGER,
    raw BLOB
);

CREATE TABLE IF NOT EXISTS received_notes (
    id INTEGER PRIMARY KEY,
    tx INTEGER NOT NULL REFERENCES transactions (id_tx),
    output_index INTEGER NOT NULL,
    pool TEXT NOT NULL,
    account_id INTEGER NOT NULL REFERENCES accounts (id),
    value INTEGER NOT NULL,
    diversifier BLOB NOT NULL,
    rseed BLOB NOT NULL,
    commitment BLOB NOT NULL,
    nf BLOB NOT NULL UNIQUE,
    tree_position INTEGER NOT NULL,
    memo BLOB,
    is_change INTEGER NOT NULL DEFAULT 0,
    UNIQUE (tx, output_index)
);

CREATE TABLE IF NOT EXISTS received_note_spends (
    received_note_id INTEGER PRIMARY KEY REFERENCES received_notes (id),
    transaction_id INTEGER NOT NULL REFERENCES transactions (id_tx)
);

CREATE TABLE IF NOT EXISTS sent_notes (
    id INTEGER PRIMARY KEY,
    tx INTEGER NOT NULL REFERENCES transactions (id_tx),
    output_index INTEGER NOT NULL,
    pool TEXT NOT NULL,
    from_account_id INTEGER NOT NULL REFERENCES accounts (id),
    to_address TEXT NOT NULL,
    value INTEGER NOT NULL,
    memo TEXT,
    UNIQUE (tx, output_index)
);
"""

# An authored spend that is still unmined once its expiry height has been
# scanned can no longer confirm; its note counts as unspent again.
_SPEND_EXPIRED = """(
    st.mined_height IS NULL AND st.expiry_height IS NOT NULL
    AND st.expiry_height <= (SELECT height FROM scan_cursor WHERE id = 0)
)"""

_NOTE_COLUMNS = f"""
    n.id, t.txid, n.pool, n.output_index, n.value, n.nf, n.tree_position,
    n.is_change, t.mined_height, n.memo,
    CASE WHEN {_SPEND_EXPIRED} THEN NULL ELSE st.txid END
"""

_NOTE_JOINS = """
    FROM received_notes n
    JOIN transactions t ON t.id_tx = n.tx
    LEFT JOIN received_note_spends s ON s.received_note_id = n.id
    LEFT JOIN transactions st ON st.id_tx = s.transaction_id
"""


def _now() -> str:
    return datetime.now(UTC).isoformat()


@dataclass
class NewSentTransaction:
    """An authored transaction accepted by the network, ready to record."""

    txid: str
    raw: bytes
    fee: int
    expiry_height: int | None
    spent_note_ids: list[int]
    sent_notes: list[SentNote] = field(default_factory=list)


@dataclass
class StoreSnapshot:
    """Read-only copy of every row the relational mirror projects."""

    transactions: list[WalletTransaction]
    received_notes: list[ReceivedNote]
    sent_notes: list[SentNote]


class WalletStore:
    """
    Handle to one user's wallet database.

    All multi-row writes run inside a single SQLite transaction: either the
    whole batch (notes, spends, checkpoints, cursor) lands or none of it.
    """

    def __init__(self, path: Path, conn: sqlite3.Connection):
        self.path = path
        self._conn: sqlite3.Connection | None = conn

    @classmethod
    def open(cls, path: Path) -> WalletStore:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(path, check_same_thread=False)
            conn.execute("PRAGMA foreign_keys = ON")
            conn.executescript(SCHEMA)
        except sqlite3.Error as e:
            raise StoreError("open", f"{path}: {e}") from e
        logger.debug(f"Opened wallet database {path}")
        return cls(path, conn)

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StoreError("access", f"wallet database {self.path} is closed")
        return self._conn

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def destroy(self) -> None:
        """Close the handle and delete the database file."""
        self.close()
        for suffix in ("", "-journal", "-wal", "-shm"):
            Path(f"{self.path}{suffix}").unlink(missing_ok=True)
        logger.info(f"Deleted wallet database {self.path}")

    @contextmanager
    def _write(self, operation: str) -> Iterator[sqlite3.Connection]:
        try:
            with self.conn as conn:
                yield conn
        except sqlite3.Error as e:
            raise StoreError(operation, str(e)) from e

    def _read(self, operation: str, sql: str, params: tuple = ()) -> list[tuple]:
        try:
            return self.conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise StoreError(operation, str(e)) from e

    # ------------------------------------------------------------------
    # Account and checkpoints
    # ------------------------------------------------------------------

    def get_account(self) -> Account | None:
        rows = self._read(
            "get_account",
            "SELECT id, viewing_key, birthday_height, created_at FROM accounts ORDER BY id LIMIT 1",
        )
        if not rows:
            return None
        account_id, viewing_key, birthday, created_at = rows[0]
        return Account(
            account_id=account_id,
            viewing_key=viewing_key,
            birthday_height=birthday,
            created_at=created_at,
        )

    def create_account(
        self,
        viewing_key: str,
        birthday_height: int,
        checkpoint_height: int,
        frontiers: dict[ShieldedPool, Frontier],
    ) -> Account:
        """
        Create the account together with its first checkpoint in every pool.

        Any checkpoints already present are cleared first; they cannot belong to
        this account's history.
        """
        created_at = _now()
        with self._write("create_account") as conn:
            existing = conn.execute("SELECT viewing_key FROM accounts").fetchall()
            if existing:
                raise AccountMismatchError("Wallet database already holds a different account")

            conn.execute("DELETE FROM tree_checkpoint_marks_removed")
            cleared = conn.execute("DELETE FROM tree_checkpoints").rowcount
            if cleared:
                logger.debug(f"Cleared {cleared} stale checkpoints before bootstrap")

            cursor = conn.execute(
                "INSERT INTO accounts (viewing_key, birthday_height, created_at) VALUES (?, ?, ?)",
                (viewing_key, birthday_height, created_at),
            )
            for pool, frontier in frontiers.items():
                conn.execute(
                    "INSERT INTO tree_checkpoints (pool, height, tree_size, root, frontier) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (
                        pool.value,
                        checkpoint_height,
                        frontier.size,
                        frontier.root(),
                        frontier.to_bytes(),
                    ),
                )

        account_id = cursor.lastrowid
        if account_id is None:
            raise StoreError("create_account", "insert did not return an account id")
        return Account(
            account_id=account_id,
            viewing_key=viewing_key,
            birthday_height=birthday_height,
            created_at=created_at,
        )

    def get_checkpoint(self, pool: ShieldedPool, height: int) -> TreeCheckpoint | None:
        """
        The checkpoint stored at ``height``, if any.

        Its removed marks are the positions of every note spent in a block at
        or below ``height``, whichever batch recorded the spend.
        """
        rows = self._read(
            "get_checkpoint",
            "SELECT tree_size, root FROM tree_checkpoints WHERE pool = ? AND height = ?",
            (pool.value, height),
        )
        if not rows:
            return None
        marks = self._read(
            "get_checkpoint",
            "SELECT mark_removed_position FROM tree_checkpoint_marks_removed "
            "WHERE pool = ? AND spent_height <= ? ORDER BY mark_removed_position",
            (pool.value, height),
        )
        tree_size, root = rows[0]
        return TreeCheckpoint(
            pool=pool,
            height=height,
            tree_size=tree_size,
            root=bytes(root).hex(),
            marks_removed=[m[0] for m in marks],
        )

    def checkpoint_heights(self, pool: ShieldedPool) -> list[int]:
        rows = self._read(
            "checkpoint_heights",
            "SELECT height FROM tree_checkpoints WHERE pool = ? ORDER BY height",
            (pool.value,),
        )
        return [row[0] for row in rows]

    def frontier_at(self, pool: ShieldedPool, height: int) -> Frontier | None:
        rows = self._read(
            "frontier_at",
            "SELECT frontier FROM tree_checkpoints WHERE pool = ? AND height = ?",
            (pool.value, height),
        )
        if not rows:
            return None
        return Frontier.from_bytes(bytes(rows[0][0]))

    def insert_checkpoint(self, pool: ShieldedPool, height: int, frontier: Frontier) -> None:
        """Write a single checkpoint, refusing to overwrite a different one."""
        with self._write("insert_checkpoint") as conn:
            self._put_checkpoint(conn, pool, height, frontier.to_bytes())

    def _put_checkpoint(
        self, conn: sqlite3.Connection, pool: ShieldedPool, height: int, frontier_bytes: bytes
    ) -> bool:
        frontier = Frontier.from_bytes(frontier_bytes)
        root = frontier.root()
        existing = conn.execute(
            "SELECT root FROM tree_checkpoints WHERE pool = ? AND height = ?",
            (pool.value, height),
        ).fetchone()
        if existing is not None:
            if bytes(existing[0]) != root:
                raise CheckpointConflictError(
                    pool.value,
                    height,
                    f"stored root {bytes(existing[0]).hex()[:16]} != {root.hex()[:16]}",
                )
            return False
        conn.execute(
            "INSERT INTO tree_checkpoints (pool, height, tree_size, root, frontier) "
            "VALUES (?, ?, ?, ?, ?)",
            (pool.value, height, frontier.size, root, frontier_bytes),
        )
        return True

    # ------------------------------------------------------------------
    # Scan progress
    # ------------------------------------------------------------------

    def last_scanned_height(self) -> int | None:
        rows = self._read("last_scanned_height", "SELECT height FROM scan_cursor WHERE id = 0")
        return rows[0][0] if rows else None

    def tracked_nullifiers(self) -> dict[bytes, tuple[ShieldedPool, int]]:
        """
        Nullifiers of notes not yet spent by a mined transaction, mapped to
        (pool, tree position). Notes spent by our own unmined transactions,
        expired ones included, stay tracked so the scanner still notices the
        nullifier if it ever appears on chain.
        """
        rows = self._read(
            "tracked_nullifiers",
            "SELECT n.nf, n.pool, n.tree_position FROM received_notes n "
            "LEFT JOIN received_note_spends s ON s.received_note_id = n.id "
            "LEFT JOIN transactions st ON st.id_tx = s.transaction_id "
            "WHERE s.received_note_id IS NULL OR st.mined_height IS NULL",
        )
        return {bytes(nf): (ShieldedPool(pool), pos) for nf, pool, pos in rows}

    def persist_batch(self, account: Account, result: BatchScanResult) -> None:
        """
        Apply one scanned batch atomically.

        Raises:
            CheckpointConflictError: A checkpoint of the batch collides with a
                stored one for a different tree state. Nothing is written.
            StoreError: The batch does not continue the stored scan progress.
        """
        with self._write("persist_batch") as conn:
            row = conn.execute("SELECT height FROM scan_cursor WHERE id = 0").fetchone()
            expected_start = row[0] + 1 if row else account.birthday_height
            if result.start_height != expected_start:
                raise StoreError(
                    "persist_batch",
                    f"batch starts at {result.start_height}, expected {expected_start}",
                )

            for checkpoint in result.checkpoints:
                self._put_checkpoint(conn, checkpoint.pool, checkpoint.height, checkpoint.frontier)

            tx_ids: dict[str, int] = {}
            mined_heights = {tx.txid: tx.mined_height for tx in result.transactions}
            for tx in result.transactions:
                created = (
                    datetime.fromtimestamp(tx.block_time, UTC).isoformat()
                    if tx.block_time
                    else _now()
                )
                conn.execute(
                    "INSERT INTO transactions (txid, mined_height, tx_index, fee, created_at) "
                    "VALUES (?, ?, ?, ?, ?) "
                    "ON CONFLICT (txid) DO UPDATE SET "
                    "mined_height = excluded.mined_height, "
                    "tx_index = excluded.tx_index, "
                    "fee = COALESCE(excluded.fee, transactions.fee)",
                    (tx.txid, tx.mined_height, tx.tx_index, tx.fee, created),
                )
                tx_ids[tx.txid] = conn.execute(
                    "SELECT id_tx FROM transactions WHERE txid = ?", (tx.txid,)
                ).fetchone()[0]

            for note in result.notes:
                conn.execute(
                    "INSERT OR IGNORE INTO received_notes "
                    "(tx, output_index, pool, account_id, value, diversifier, rseed, "
                    "commitment, nf, tree_position, is_change) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        tx_ids[note.txid],
                        note.output_index,
                        note.pool.value,
                        account.account_id,
                        note.value,
                        note.diversifier,
                        note.rseed,
                        note.commitment,
                        note.nullifier,
                        note.tree_position,
                        int(note.is_change),
                    ),
                )

            for spend in result.spends:
                note_row = conn.execute(
                    "SELECT id FROM received_notes WHERE nf = ?", (spend.nullifier,)
                ).fetchone()
                if note_row is None:
                    raise StoreError(
                        "persist_batch", f"spend of unknown note in {spend.spending_txid}"
                    )
                # a mined spend replaces a link to an expired authored one
                conn.execute(
                    "INSERT INTO received_note_spends (received_note_id, transaction_id) "
                    "VALUES (?, ?) "
                    "ON CONFLICT (received_note_id) DO UPDATE SET "
                    "transaction_id = excluded.transaction_id",
                    (note_row[0], tx_ids[spend.spending_txid]),
                )
                conn.execute(
                    "INSERT OR IGNORE INTO tree_checkpoint_marks_removed "
                    "(pool, mark_removed_position, spent_height) VALUES (?, ?, ?)",
                    (spend.pool.value, spend.tree_position, mined_heights[spend.spending_txid]),
                )

            conn.execute(
                "INSERT INTO scan_cursor (id, height, block_hash) VALUES (0, ?, ?) "
                "ON CONFLICT (id) DO UPDATE SET "
                "height = excluded.height, block_hash = excluded.block_hash",
                (result.end_height, result.end_block_hash),
            )

    # ------------------------------------------------------------------
    # Notes, balances and authored transactions
    # ------------------------------------------------------------------

    def _note_from_row(self, row: tuple) -> ReceivedNote:
        (note_id, txid, pool, index, value, nf, position, is_change, height, memo, spent_in) = row
        return ReceivedNote(
            note_id=note_id,
            txid=txid,
            pool=ShieldedPool(pool),
            output_index=index,
            value=value,
            nullifier=bytes(nf).hex(),
            tree_position=position,
            is_change=bool(is_change),
            mined_height=height,
            memo=bytes(memo) if memo is not None else None,
            spent_in_txid=spent_in,
        )

    def received_notes(self) -> list[ReceivedNote]:
        rows = self._read(
            "received_notes",
            f"SELECT {_NOTE_COLUMNS} {_NOTE_JOINS} ORDER BY t.mined_height, n.output_index",
        )
        return [self._note_from_row(row) for row in rows]

    def spendable_notes(self) -> list[ReceivedNote]:
        rows = self._read(
            "spendable_notes",
            f"SELECT {_NOTE_COLUMNS} {_NOTE_JOINS} "
            f"WHERE (s.received_note_id IS NULL OR {_SPEND_EXPIRED}) "
            "AND t.mined_height IS NOT NULL "
            "ORDER BY n.value DESC, n.id",
        )
        return [self._note_from_row(row) for row in rows]

    def note_spending_material(self, note_id: int) -> tuple[bytes, bytes, bytes]:
        """(diversifier, rseed, commitment) of a note, needed to spend it."""
        rows = self._read(
            "note_spending_material",
            "SELECT diversifier, rseed, commitment FROM received_notes WHERE id = ?",
            (note_id,),
        )
        if not rows:
            raise StoreError("note_spending_material", f"unknown note {note_id}")
        diversifier, rseed, commitment = rows[0]
        return bytes(diversifier), bytes(rseed), bytes(commitment)

    def balance(self) -> dict[ShieldedPool, int]:
        """Sum of unspent note values per pool. Expired authored spends don't count."""
        rows = self._read(
            "balance",
            "SELECT n.pool, COALESCE(SUM(n.value), 0) FROM received_notes n "
            "LEFT JOIN received_note_spends s ON s.received_note_id = n.id "
            "LEFT JOIN transactions st ON st.id_tx = s.transaction_id "
            f"WHERE s.received_note_id IS NULL OR {_SPEND_EXPIRED} GROUP BY n.pool",
        )
        totals = {pool: 0 for pool in ShieldedPool}
        for pool, total in rows:
            totals[ShieldedPool(pool)] = total
        return totals

    def record_sent_transaction(self, sent: NewSentTransaction) -> None:
        """Record an accepted authored transaction with its spends and payments."""
        with self._write("record_sent_transaction") as conn:
            account = conn.execute("SELECT id FROM accounts ORDER BY id LIMIT 1").fetchone()
            if account is None:
                raise StoreError("record_sent_transaction", "no account")

            conn.execute(
                "INSERT INTO transactions (txid, fee, created_at, expiry_height, raw) "
                "VALUES (?, ?, ?, ?, ?) "
                "ON CONFLICT (txid) DO UPDATE SET "
                "fee = excluded.fee, expiry_height = excluded.expiry_height, raw = excluded.raw",
                (sent.txid, sent.fee, _now(), sent.expiry_height, sent.raw),
            )
            id_tx = conn.execute(
                "SELECT id_tx FROM transactions WHERE txid = ?", (sent.txid,)
            ).fetchone()[0]

            # only unspent or expired notes are selected, so overwriting is safe
            for note_id in sent.spent_note_ids:
                conn.execute(
                    "INSERT INTO received_note_spends (received_note_id, transaction_id) "
                    "VALUES (?, ?) "
                    "ON CONFLICT (received_note_id) DO UPDATE SET "
                    "transaction_id = excluded.transaction_id",
                    (note_id, id_tx),
                )

            for note in sent.sent_notes:
                conn.execute(
                    "INSERT OR IGNORE INTO sent_notes "
                    "(tx, output_index, pool, from_account_id, to_address, value, memo) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (
                        id_tx,
                        note.output_index,
                        note.pool.value,
                        account[0],
                        note.to_address,
                        note.value,
                        note.memo,
                    ),
                )

    def transactions(self) -> list[WalletTransaction]:
        rows = self._read(
            "transactions",
            "SELECT txid, mined_height, tx_index, fee, created_at, expiry_height "
            "FROM transactions ORDER BY id_tx",
        )
        return [
            WalletTransaction(
                txid=txid,
                mined_height=height,
                tx_index=index,
                fee=fee,
                created_at=created,
                expiry_height=expiry,
            )
            for txid, height, index, fee, created, expiry in rows
        ]

    def sent_notes(self) -> list[SentNote]:
        rows = self._read(
            "sent_notes",
            "SELECT t.txid, s.pool, s.output_index, s.to_address, s.value, s.memo "
            "FROM sent_notes s JOIN transactions t ON t.id_tx = s.tx ORDER BY s.id",
        )
        return [
            SentNote(
                txid=txid,
                pool=ShieldedPool(pool),
                output_index=index,
                to_address=address,
                value=value,
                memo=memo,
            )
            for txid, pool, index, address, value, memo in rows
        ]

    def snapshot(self) -> StoreSnapshot:
        """Read every mirrored row in one read transaction."""
        try:
            self.conn.execute("BEGIN")
            try:
                return StoreSnapshot(
                    transactions=self.transactions(),
                    received_notes=self.received_notes(),
                    sent_notes=self.sent_notes(),
                )
            finally:
                self.conn.execute("COMMIT")
        except sqlite3.Error as e:
            raise StoreError("snapshot", str(e)) from e
