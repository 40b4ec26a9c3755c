"""
Tests for the embedded wallet database.
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock

import pytest
from shieldcore.models import ShieldedPool

from shieldwallet.errors import AccountMismatchError, CheckpointConflictError, StoreError
from shieldwallet.wallet.keys import AccountKeys
from shieldwallet.wallet.models import (
    Account,
    BatchCheckpoint,
    BatchScanResult,
    DetectedSpend,
    DiscoveredNote,
    ScannedTransaction,
    SentNote,
)
from shieldwallet.wallet.store import NewSentTransaction, WalletStore
from shieldwallet.wallet.tree import Frontier

TX_A = "aa" * 32
TX_B = "bb" * 32
TX_SENT = "cc" * 32


def _create_account(store: WalletStore, keys: AccountKeys) -> Account:
    return store.create_account(
        keys.viewing_key.encode(), 1000, 999, {pool: Frontier() for pool in ShieldedPool}
    )


def _note(txid: str, value: int, tag: int, position: int = 0) -> DiscoveredNote:
    return DiscoveredNote(
        txid=txid,
        pool=ShieldedPool.ORCHARD,
        output_index=0,
        value=value,
        diversifier=b"\x01" * 11,
        rseed=bytes([tag]) * 32,
        commitment=bytes([tag + 1]) * 32,
        nullifier=bytes([tag]) * 32,
        tree_position=position,
    )


def _batch(
    start: int,
    end: int,
    transactions: list[ScannedTransaction] | None = None,
    notes: list[DiscoveredNote] | None = None,
    spends: list[DetectedSpend] | None = None,
) -> BatchScanResult:
    return BatchScanResult(
        start_height=start,
        end_height=end,
        end_block_hash=f"{end:064x}",
        transactions=transactions or [],
        notes=notes or [],
        spends=spends or [],
        checkpoints=[
            BatchCheckpoint(pool=pool, height=end, frontier=Frontier().to_bytes())
            for pool in ShieldedPool
        ],
    )


def _funding_batch() -> BatchScanResult:
    return _batch(
        1000,
        1049,
        transactions=[ScannedTransaction(txid=TX_A, mined_height=1020, tx_index=0, fee=10_000)],
        notes=[_note(TX_A, 25_000, tag=1, position=4)],
    )


class TestLifecycle:
    def test_open_creates_file(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "wallet.db"
        store = WalletStore.open(path)
        try:
            assert path.exists()
            assert store.is_open
            assert store.get_account() is None
            assert store.last_scanned_height() is None
        finally:
            store.close()

    def test_closed_store_raises(self, store: WalletStore) -> None:
        store.close()
        assert not store.is_open
        with pytest.raises(StoreError, match="closed"):
            store.get_account()

    def test_destroy_deletes_file(self, store: WalletStore) -> None:
        store.destroy()
        assert not store.path.exists()
        assert not store.is_open


class TestAccount:
    """Tests for account creation and checkpoints."""

    def test_create_account(self, store: WalletStore, account_keys: AccountKeys) -> None:
        account = _create_account(store, account_keys)

        assert store.get_account() == account
        assert account.birthday_height == 1000
        for pool in ShieldedPool:
            assert store.checkpoint_heights(pool) == [999]

    def test_create_account_without_row_id(
        self, tmp_path: Path, account_keys: AccountKeys
    ) -> None:
        cursor = MagicMock(lastrowid=None, rowcount=0)
        cursor.fetchall.return_value = []
        conn = MagicMock()
        conn.__enter__.return_value = conn
        conn.execute.return_value = cursor
        store = WalletStore(tmp_path / "wallet.db", conn)

        with pytest.raises(StoreError, match="create_account: insert did not return"):
            _create_account(store, account_keys)

    def test_second_account_rejected(
        self, store: WalletStore, account_keys: AccountKeys, other_keys: AccountKeys
    ) -> None:
        _create_account(store, account_keys)
        with pytest.raises(AccountMismatchError):
            _create_account(store, other_keys)

    def test_stale_checkpoints_cleared(
        self, store: WalletStore, account_keys: AccountKeys
    ) -> None:
        store.insert_checkpoint(ShieldedPool.SAPLING, 500, Frontier())

        _create_account(store, account_keys)

        assert store.checkpoint_heights(ShieldedPool.SAPLING) == [999]

    def test_identical_checkpoint_is_idempotent(self, store: WalletStore) -> None:
        store.insert_checkpoint(ShieldedPool.ORCHARD, 10, Frontier())
        store.insert_checkpoint(ShieldedPool.ORCHARD, 10, Frontier())
        assert store.checkpoint_heights(ShieldedPool.ORCHARD) == [10]

    def test_conflicting_checkpoint(self, store: WalletStore) -> None:
        other = Frontier()
        other.append(b"\x07" * 32)
        store.insert_checkpoint(ShieldedPool.ORCHARD, 10, Frontier())

        with pytest.raises(CheckpointConflictError) as exc_info:
            store.insert_checkpoint(ShieldedPool.ORCHARD, 10, other)

        assert exc_info.value.height == 10
        assert exc_info.value.pool == "orchard"

    def test_frontier_at(self, store: WalletStore) -> None:
        frontier = Frontier()
        frontier.append(b"\x03" * 32)
        store.insert_checkpoint(ShieldedPool.SAPLING, 42, frontier)

        assert store.frontier_at(ShieldedPool.SAPLING, 42) == frontier
        assert store.frontier_at(ShieldedPool.SAPLING, 43) is None
        checkpoint = store.get_checkpoint(ShieldedPool.SAPLING, 42)
        assert checkpoint is not None
        assert checkpoint.tree_size == 1
        assert checkpoint.root == frontier.root().hex()


class TestPersistBatch:
    """Tests for atomic batch persistence."""

    def test_batch_advances_cursor(self, store: WalletStore, account_keys: AccountKeys) -> None:
        account = _create_account(store, account_keys)

        store.persist_batch(account, _funding_batch())

        assert store.last_scanned_height() == 1049
        assert store.balance() == {ShieldedPool.SAPLING: 0, ShieldedPool.ORCHARD: 25_000}
        notes = store.received_notes()
        assert len(notes) == 1
        assert notes[0].mined_height == 1020
        assert notes[0].tree_position == 4
        assert not notes[0].is_spent
        assert store.checkpoint_heights(ShieldedPool.ORCHARD) == [999, 1049]

    def test_batch_must_continue_cursor(
        self, store: WalletStore, account_keys: AccountKeys
    ) -> None:
        account = _create_account(store, account_keys)
        with pytest.raises(StoreError, match="expected 1000"):
            store.persist_batch(account, _batch(1001, 1049))

        store.persist_batch(account, _batch(1000, 1049))
        with pytest.raises(StoreError, match="expected 1050"):
            store.persist_batch(account, _batch(1000, 1049))

    def test_conflict_writes_nothing(self, store: WalletStore, account_keys: AccountKeys) -> None:
        account = _create_account(store, account_keys)
        bogus = Frontier()
        bogus.append(b"\x07" * 32)
        store.insert_checkpoint(ShieldedPool.ORCHARD, 1049, bogus)

        with pytest.raises(CheckpointConflictError):
            store.persist_batch(account, _funding_batch())

        assert store.last_scanned_height() is None
        assert store.received_notes() == []
        assert store.transactions() == []

    def test_spend_marks_note(self, store: WalletStore, account_keys: AccountKeys) -> None:
        account = _create_account(store, account_keys)
        store.persist_batch(account, _funding_batch())
        nullifier = bytes([1]) * 32

        assert nullifier in store.tracked_nullifiers()

        store.persist_batch(
            account,
            _batch(
                1050,
                1099,
                transactions=[ScannedTransaction(txid=TX_B, mined_height=1070, tx_index=2)],
                spends=[
                    DetectedSpend(
                        nullifier=nullifier,
                        spending_txid=TX_B,
                        pool=ShieldedPool.ORCHARD,
                        tree_position=4,
                    )
                ],
            ),
        )

        assert store.balance()[ShieldedPool.ORCHARD] == 0
        assert store.received_notes()[0].spent_in_txid == TX_B
        assert store.tracked_nullifiers() == {}
        checkpoint = store.get_checkpoint(ShieldedPool.ORCHARD, 1099)
        assert checkpoint is not None
        assert checkpoint.marks_removed == [4]

    def test_removed_marks_follow_spend_height(
        self, store: WalletStore, account_keys: AccountKeys
    ) -> None:
        account = _create_account(store, account_keys)
        store.persist_batch(account, _funding_batch())
        store.persist_batch(
            account,
            _batch(
                1050,
                1099,
                transactions=[ScannedTransaction(txid=TX_B, mined_height=1070, tx_index=0)],
                spends=[
                    DetectedSpend(
                        nullifier=bytes([1]) * 32,
                        spending_txid=TX_B,
                        pool=ShieldedPool.ORCHARD,
                        tree_position=4,
                    )
                ],
            ),
        )
        store.persist_batch(account, _batch(1100, 1149))

        before = store.get_checkpoint(ShieldedPool.ORCHARD, 1049)
        later = store.get_checkpoint(ShieldedPool.ORCHARD, 1149)
        other_pool = store.get_checkpoint(ShieldedPool.SAPLING, 1149)
        assert before is not None and later is not None and other_pool is not None
        assert before.marks_removed == []
        assert later.marks_removed == [4]
        assert other_pool.marks_removed == []

    def test_spend_of_unknown_note(self, store: WalletStore, account_keys: AccountKeys) -> None:
        account = _create_account(store, account_keys)
        batch = _batch(
            1000,
            1049,
            transactions=[ScannedTransaction(txid=TX_B, mined_height=1010, tx_index=0)],
            spends=[
                DetectedSpend(
                    nullifier=b"\x09" * 32,
                    spending_txid=TX_B,
                    pool=ShieldedPool.ORCHARD,
                    tree_position=0,
                )
            ],
        )
        with pytest.raises(StoreError, match="unknown note"):
            store.persist_batch(account, batch)
        assert store.last_scanned_height() is None


class TestNotes:
    def test_spendable_notes_largest_first(
        self, store: WalletStore, account_keys: AccountKeys
    ) -> None:
        account = _create_account(store, account_keys)
        store.persist_batch(
            account,
            _batch(
                1000,
                1049,
                transactions=[
                    ScannedTransaction(txid=TX_A, mined_height=1001, tx_index=0),
                    ScannedTransaction(txid=TX_B, mined_height=1002, tx_index=0),
                ],
                notes=[_note(TX_A, 5_000, tag=1), _note(TX_B, 70_000, tag=3, position=1)],
            ),
        )

        assert [note.value for note in store.spendable_notes()] == [70_000, 5_000]

    def test_spending_material(self, store: WalletStore, account_keys: AccountKeys) -> None:
        account = _create_account(store, account_keys)
        store.persist_batch(account, _funding_batch())
        note = store.received_notes()[0]

        diversifier, rseed, commitment = store.note_spending_material(note.note_id)

        assert diversifier == b"\x01" * 11
        assert rseed == bytes([1]) * 32
        assert commitment == bytes([2]) * 32
        with pytest.raises(StoreError, match="unknown note"):
            store.note_spending_material(note.note_id + 100)


class TestSentTransactions:
    """Tests for recording authored transactions."""

    def _record(self, store: WalletStore, note_id: int) -> None:
        store.record_sent_transaction(
            NewSentTransaction(
                txid=TX_SENT,
                raw=b"raw-bytes",
                fee=10_000,
                expiry_height=1090,
                spent_note_ids=[note_id],
                sent_notes=[
                    SentNote(
                        txid=TX_SENT,
                        pool=ShieldedPool.ORCHARD,
                        output_index=0,
                        to_address="zo1recipient",
                        value=15_000,
                        memo="rent",
                    )
                ],
            )
        )

    def test_record_marks_spend(self, store: WalletStore, account_keys: AccountKeys) -> None:
        account = _create_account(store, account_keys)
        store.persist_batch(account, _funding_batch())
        note = store.received_notes()[0]

        self._record(store, note.note_id)

        assert store.balance()[ShieldedPool.ORCHARD] == 0
        assert store.spendable_notes() == []
        assert store.received_notes()[0].spent_in_txid == TX_SENT
        sent_tx = next(tx for tx in store.transactions() if tx.txid == TX_SENT)
        assert sent_tx.mined_height is None
        assert sent_tx.expiry_height == 1090
        assert store.sent_notes()[0].memo == "rent"
        # still tracked until the spend is mined
        assert bytes([1]) * 32 in store.tracked_nullifiers()

    def test_mined_spend_completes_tracking(
        self, store: WalletStore, account_keys: AccountKeys
    ) -> None:
        account = _create_account(store, account_keys)
        store.persist_batch(account, _funding_batch())
        self._record(store, store.received_notes()[0].note_id)

        store.persist_batch(
            account,
            _batch(
                1050,
                1099,
                transactions=[ScannedTransaction(txid=TX_SENT, mined_height=1060, tx_index=1)],
                spends=[
                    DetectedSpend(
                        nullifier=bytes([1]) * 32,
                        spending_txid=TX_SENT,
                        pool=ShieldedPool.ORCHARD,
                        tree_position=4,
                    )
                ],
            ),
        )

        sent_tx = next(tx for tx in store.transactions() if tx.txid == TX_SENT)
        assert sent_tx.mined_height == 1060
        assert sent_tx.fee == 10_000
        assert store.tracked_nullifiers() == {}

    def test_expired_spend_releases_note(
        self, store: WalletStore, account_keys: AccountKeys
    ) -> None:
        account = _create_account(store, account_keys)
        store.persist_batch(account, _funding_batch())
        note_id = store.received_notes()[0].note_id
        self._record(store, note_id)

        # scanned up to, not past, the expiry height of 1090
        store.persist_batch(account, _batch(1050, 1089))
        assert store.balance()[ShieldedPool.ORCHARD] == 0

        store.persist_batch(account, _batch(1090, 1099))
        assert store.balance()[ShieldedPool.ORCHARD] == 25_000
        assert [note.note_id for note in store.spendable_notes()] == [note_id]
        assert store.received_notes()[0].spent_in_txid is None
        assert bytes([1]) * 32 in store.tracked_nullifiers()

    def test_resend_after_expiry(self, store: WalletStore, account_keys: AccountKeys) -> None:
        account = _create_account(store, account_keys)
        store.persist_batch(account, _funding_batch())
        note_id = store.received_notes()[0].note_id
        self._record(store, note_id)
        store.persist_batch(account, _batch(1050, 1099))

        resend = "dd" * 32
        store.record_sent_transaction(
            NewSentTransaction(
                txid=resend, raw=b"", fee=10_000, expiry_height=1140, spent_note_ids=[note_id]
            )
        )

        assert store.balance()[ShieldedPool.ORCHARD] == 0
        assert store.spendable_notes() == []
        assert store.received_notes()[0].spent_in_txid == resend

    def test_snapshot(self, store: WalletStore, account_keys: AccountKeys) -> None:
        account = _create_account(store, account_keys)
        store.persist_batch(account, _funding_batch())
        self._record(store, store.received_notes()[0].note_id)

        snapshot = store.snapshot()

        assert {tx.txid for tx in snapshot.transactions} == {TX_A, TX_SENT}
        assert len(snapshot.received_notes) == 1
        assert len(snapshot.sent_notes) == 1
