"""
Transfer proposals and transaction building.

A proposal fixes everything about a transfer except proofs and signatures:
the recipient, the selected notes, the fee, the change and the anchor.
Estimating stops at the proposal; building takes the very same proposal
and proves and signs it in a worker.
"""

from __future__ import annotations

import asyncio
import functools
from concurrent.futures import Executor
from dataclasses import dataclass, field

from loguru import logger
from shieldcore.models import NetworkType, ShieldedPool

from shieldwallet.errors import ProofGenerationError, StoreError
from shieldwallet.wallet.address import PaymentAddress, parse_address_for_network
from shieldwallet.wallet.keys import AccountKeys
from shieldwallet.wallet.models import ReceivedNote, SentNote
from shieldwallet.wallet.note_encryption import encode_memo, encrypt_note
from shieldwallet.wallet.note_selection import select_notes
from shieldwallet.wallet.prover import SpendProver
from shieldwallet.wallet.store import NewSentTransaction, WalletStore
from shieldwallet.wallet.transaction import (
    OutputDescription,
    ShieldedTransaction,
    SpendDescription,
)

DEFAULT_EXPIRY_DELTA = 40


@dataclass
class TransferProposal:
    recipient: PaymentAddress
    recipient_address: str
    amount: int
    memo: str | None
    notes: list[ReceivedNote]
    fee: int
    change: int
    change_pool: ShieldedPool | None
    anchor_height: int

    @property
    def total_input(self) -> int:
        return sum(note.value for note in self.notes)

    @property
    def total_output(self) -> int:
        return self.amount + self.change


@dataclass
class BuiltTransaction:
    txid: str
    raw: bytes
    proposal: TransferProposal
    expiry_height: int
    sent_notes: list[SentNote] = field(default_factory=list)

    def to_record(self) -> NewSentTransaction:
        return NewSentTransaction(
            txid=self.txid,
            raw=self.raw,
            fee=self.proposal.fee,
            expiry_height=self.expiry_height,
            spent_note_ids=[note.note_id for note in self.proposal.notes],
            sent_notes=list(self.sent_notes),
        )


class TransactionProposer:
    """Builds fee-aware proposals against the last completed scan."""

    def __init__(self, network: NetworkType):
        self.network = network

    def propose(
        self,
        store: WalletStore,
        to_address: str,
        amount: int,
        memo: str | None = None,
    ) -> TransferProposal:
        """
        Raises:
            InvalidAddressError / AddressNetworkMismatchError: before any other work
            MemoTooLongError: memo exceeds 511 bytes
            InsufficientFundsError: spendable notes cannot cover amount plus fee
        """
        recipient = parse_address_for_network(to_address, self.network)
        encode_memo(memo)

        selection = select_notes(store.spendable_notes(), amount, recipient.pool)

        anchor_height = store.last_scanned_height()
        if anchor_height is None:
            raise StoreError("propose", "wallet has never been scanned")

        logger.debug(
            f"Proposal: {len(selection.notes)} notes, fee {selection.fee}, "
            f"change {selection.change} -> {selection.change_pool}"
        )
        return TransferProposal(
            recipient=recipient,
            recipient_address=to_address,
            amount=amount,
            memo=memo,
            notes=selection.notes,
            fee=selection.fee,
            change=selection.change,
            change_pool=selection.change_pool,
            anchor_height=anchor_height,
        )


class TransactionBuilder:
    """Proves and signs proposals."""

    def __init__(
        self,
        prover: SpendProver,
        executor: Executor | None = None,
        expiry_delta: int = DEFAULT_EXPIRY_DELTA,
    ):
        self.prover = prover
        self.executor = executor
        self.expiry_delta = expiry_delta

    async def build(
        self, proposal: TransferProposal, keys: AccountKeys, store: WalletStore
    ) -> BuiltTransaction:
        """
        Raises:
            ProofGenerationError: anchors missing, or proving/signing failed
        """
        anchors, materials = await asyncio.to_thread(self._spend_inputs, proposal, store)

        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self.executor,
            functools.partial(self._build_sync, proposal, keys, anchors, materials),
        )

    @staticmethod
    def _spend_inputs(
        proposal: TransferProposal, store: WalletStore
    ) -> tuple[dict[ShieldedPool, bytes], dict[int, tuple[bytes, bytes, bytes]]]:
        anchors: dict[ShieldedPool, bytes] = {}
        for pool in {note.pool for note in proposal.notes}:
            frontier = store.frontier_at(pool, proposal.anchor_height)
            if frontier is None:
                raise ProofGenerationError(
                    f"No {pool.value} checkpoint at anchor height {proposal.anchor_height}"
                )
            anchors[pool] = frontier.root()

        materials = {
            note.note_id: store.note_spending_material(note.note_id) for note in proposal.notes
        }
        return anchors, materials

    def _build_sync(
        self,
        proposal: TransferProposal,
        keys: AccountKeys,
        anchors: dict[ShieldedPool, bytes],
        materials: dict[int, tuple[bytes, bytes, bytes]],
    ) -> BuiltTransaction:
        expiry_height = proposal.anchor_height + 1 + self.expiry_delta
        tx = ShieldedTransaction(expiry_height=expiry_height, fee=proposal.fee)

        try:
            for note in proposal.notes:
                _diversifier, rseed, commitment = materials[note.note_id]
                vk = keys.viewing_key[note.pool]
                nullifier = bytes.fromhex(note.nullifier)
                tx.spends.append(
                    SpendDescription(
                        pool=note.pool,
                        nullifier=nullifier,
                        anchor=anchors[note.pool],
                        rk=vk.ak,
                        proof=self.prover.prove_spend(
                            note.pool,
                            nullifier,
                            anchors[note.pool],
                            vk.ak,
                            commitment,
                            note.value,
                            rseed,
                        ),
                    )
                )

            recipient = proposal.recipient
            tx.outputs.append(
                self._output(
                    recipient.pool,
                    recipient.diversifier,
                    recipient.pk_d,
                    proposal.amount,
                    encode_memo(proposal.memo),
                )
            )
            if proposal.change > 0 and proposal.change_pool is not None:
                own = keys.viewing_key[proposal.change_pool]
                tx.outputs.append(
                    self._output(
                        proposal.change_pool, own.diversifier, own.pk_d, proposal.change, None
                    )
                )

            sighash = tx.sighash()
            for spend in tx.spends:
                signing_key = keys.spending_keys[spend.pool].authorizing_key()
                spend.spend_auth_sig = signing_key.sign(sighash)
        except ProofGenerationError:
            raise
        except ValueError as e:
            raise ProofGenerationError(f"Failed to prove transaction: {e}") from e

        txid = tx.txid
        return BuiltTransaction(
            txid=txid,
            raw=tx.to_bytes(),
            proposal=proposal,
            expiry_height=expiry_height,
            sent_notes=[
                SentNote(
                    txid=txid,
                    pool=proposal.recipient.pool,
                    output_index=0,
                    to_address=proposal.recipient_address,
                    value=proposal.amount,
                    memo=proposal.memo,
                )
            ],
        )

    def _output(
        self,
        pool: ShieldedPool,
        diversifier: bytes,
        pk_d: bytes,
        value: int,
        memo: bytes | None,
    ) -> OutputDescription:
        note = encrypt_note(pool, diversifier, pk_d, value, memo=memo)
        return OutputDescription(
            pool=pool,
            cmu=note.cmu,
            epk=note.epk,
            ciphertext=note.ciphertext,
            memo_ciphertext=note.memo_ciphertext,
            proof=self.prover.prove_output(pool, note.cmu, note.epk, value),
        )
