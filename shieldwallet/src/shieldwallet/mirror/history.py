"""
Paginated transaction history read from the relational mirror.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel
from shieldcore.models import NetworkType, get_network_params
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shieldwallet.mirror.models import MirrorReceivedNote, MirrorSentNote, MirrorTransaction

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


class HistoryEntry(BaseModel):
    txid: str
    direction: Literal["sent", "received"]
    amount_zatoshis: int
    fee_zatoshis: int | None = None
    block_height: int | None = None
    created_at: datetime | None = None
    memo: str | None = None
    explorer_url: str

    @property
    def confirmed(self) -> bool:
        return self.block_height is not None


class HistoryPage(BaseModel):
    entries: list[HistoryEntry]
    page: int
    page_size: int
    total: int

    @property
    def has_more(self) -> bool:
        return (self.page + 1) * self.page_size < self.total


def clamp_page_size(page_size: int) -> int:
    return max(1, min(page_size, MAX_PAGE_SIZE))


class TransactionHistory:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], network: NetworkType):
        self.session_factory = session_factory
        self.params = get_network_params(network)

    async def list_transactions(
        self, user_id: str, page: int = 0, page_size: int = DEFAULT_PAGE_SIZE
    ) -> HistoryPage:
        """
        One page of ``user_id``'s transactions, newest mined first, unmined last.

        A transaction with sent notes is "sent" and its amount is the total
        paid out; otherwise it is "received" with the total of its non-change
        notes.
        """
        if page < 0:
            raise ValueError(f"Page must be non-negative, got {page}")
        page_size = clamp_page_size(page_size)

        async with self.session_factory() as session:
            total = await session.scalar(
                select(func.count())
                .select_from(MirrorTransaction)
                .where(MirrorTransaction.user_id == user_id)
            )
            result = await session.execute(
                select(MirrorTransaction)
                .where(MirrorTransaction.user_id == user_id)
                .order_by(
                    MirrorTransaction.block_height.desc().nulls_last(),
                    MirrorTransaction.id.desc(),
                )
                .offset(page * page_size)
                .limit(page_size)
            )
            transactions = list(result.scalars().all())
            ids = [tx.id for tx in transactions]

            sent: dict[int, tuple[int, str | None]] = {}
            received: dict[int, int] = {}
            if ids:
                sent_rows = await session.execute(
                    select(
                        MirrorSentNote.transaction_id,
                        func.sum(MirrorSentNote.value_zatoshis),
                        func.max(MirrorSentNote.memo),
                    )
                    .where(MirrorSentNote.transaction_id.in_(ids))
                    .group_by(MirrorSentNote.transaction_id)
                )
                sent = {tx_id: (int(amount), memo) for tx_id, amount, memo in sent_rows.all()}

                received_rows = await session.execute(
                    select(
                        MirrorReceivedNote.transaction_id,
                        func.sum(MirrorReceivedNote.value_zatoshis),
                    )
                    .where(
                        MirrorReceivedNote.transaction_id.in_(ids),
                        MirrorReceivedNote.is_change.is_(False),
                    )
                    .group_by(MirrorReceivedNote.transaction_id)
                )
                received = {tx_id: int(amount) for tx_id, amount in received_rows.all()}

        entries = []
        for tx in transactions:
            if tx.id in sent:
                amount, memo = sent[tx.id]
                direction: Literal["sent", "received"] = "sent"
            else:
                amount, memo = received.get(tx.id, 0), None
                direction = "received"
            entries.append(
                HistoryEntry(
                    txid=tx.txid,
                    direction=direction,
                    amount_zatoshis=amount,
                    fee_zatoshis=tx.fee_zatoshis,
                    block_height=tx.block_height,
                    created_at=tx.created_at,
                    memo=memo,
                    explorer_url=self.params.explorer_tx_url(tx.txid),
                )
            )

        return HistoryPage(
            entries=entries, page=page, page_size=page_size, total=total or 0
        )
