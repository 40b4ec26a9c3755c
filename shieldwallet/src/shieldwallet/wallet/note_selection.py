"""
Note selection for outgoing transfers.

Greedy largest-first: notes are added in descending value order until the
selected value covers the payment plus the fee the selection itself incurs.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass

from shieldcore.models import FALLBACK_POOL, ShieldedPool

from shieldwallet.errors import InsufficientFundsError
from shieldwallet.wallet.fees import conventional_fee
from shieldwallet.wallet.models import ReceivedNote


@dataclass
class NoteSelection:
    notes: list[ReceivedNote]
    fee: int
    change: int
    change_pool: ShieldedPool | None

    @property
    def total_selected(self) -> int:
        return sum(note.value for note in self.notes)


def change_pool_for(notes: list[ReceivedNote]) -> ShieldedPool:
    """Change returns to the inputs' pool, or the fallback pool for mixed inputs."""
    pools = {note.pool for note in notes}
    if len(pools) == 1:
        return pools.pop()
    return FALLBACK_POOL


def _settle(
    notes: list[ReceivedNote], amount: int, recipient_pool: ShieldedPool
) -> NoteSelection | None:
    total = sum(note.value for note in notes)
    spends = Counter(note.pool for note in notes)
    outputs = Counter({recipient_pool: 1})

    fee_without_change = conventional_fee(spends, outputs)
    excess = total - amount - fee_without_change
    if excess < 0:
        return None
    if excess == 0:
        return NoteSelection(notes=notes, fee=fee_without_change, change=0, change_pool=None)

    change_pool = change_pool_for(notes)
    outputs[change_pool] += 1
    fee_with_change = conventional_fee(spends, outputs)
    change = total - amount - fee_with_change
    if change <= 0:
        # too small to pay for its own output, left to the fee
        return NoteSelection(notes=notes, fee=total - amount, change=0, change_pool=None)
    return NoteSelection(notes=notes, fee=fee_with_change, change=change, change_pool=change_pool)


def select_notes(
    spendable: list[ReceivedNote], amount: int, recipient_pool: ShieldedPool
) -> NoteSelection:
    """
    Select notes paying ``amount`` to ``recipient_pool`` plus the fee.

    Raises:
        ValueError: If amount is not positive
        InsufficientFundsError: If all spendable notes together do not suffice
    """
    if amount <= 0:
        raise ValueError(f"Amount must be positive, got {amount}")

    eligible = sorted(
        (note for note in spendable if not note.is_spent),
        key=lambda n: (-n.value, n.note_id),
    )

    selected: list[ReceivedNote] = []
    for note in eligible:
        selected.append(note)
        selection = _settle(list(selected), amount, recipient_pool)
        if selection is not None:
            return selection

    available = sum(note.value for note in eligible)
    needed = amount + conventional_fee(
        Counter(note.pool for note in eligible),
        Counter({recipient_pool: 1}),
    )
    raise InsufficientFundsError(needed=needed, available=available)
