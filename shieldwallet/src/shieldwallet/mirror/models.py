"""
SQLAlchemy models of the shared relational mirror.

Every row carries the owning user's identifier; natural keys are
(user_id, txid) for transactions and (user_id, transaction_id, note_index)
for received and sent notes.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    LargeBinary,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# SQLite only autoincrements INTEGER PRIMARY KEY columns
_PK = BigInteger().with_variant(Integer, "sqlite")


class Base(DeclarativeBase):
    """Base class for all mirror models."""

    pass


class MirrorTransaction(Base):
    __tablename__ = "transactions"
    __table_args__ = (
        UniqueConstraint("user_id", "txid", name="uq_transactions_user_txid"),
        Index("ix_transactions_user_height", "user_id", "block_height"),
    )

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    txid: Mapped[str] = mapped_column(String(64), nullable=False)
    block_height: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    tx_index: Mapped[int | None] = mapped_column(Integer, nullable=True)
    fee_zatoshis: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    expiry_height: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    mirrored_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


class MirrorReceivedNote(Base):
    __tablename__ = "received_notes"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "transaction_id", "note_index", name="uq_received_notes_user_tx_index"
        ),
    )

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    transaction_id: Mapped[int] = mapped_column(
        ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False
    )
    note_index: Mapped[int] = mapped_column(Integer, nullable=False)
    pool: Mapped[str] = mapped_column(String(16), nullable=False)
    value_zatoshis: Mapped[int] = mapped_column(BigInteger, nullable=False)
    memo: Mapped[bytes | None] = mapped_column(LargeBinary, nullable=True)
    is_change: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # unresolved until the spending transaction is itself mirrored
    spent_in_tx_id: Mapped[int | None] = mapped_column(
        ForeignKey("transactions.id", ondelete="SET NULL"), nullable=True
    )


class MirrorSentNote(Base):
    __tablename__ = "sent_notes"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "transaction_id", "note_index", name="uq_sent_notes_user_tx_index"
        ),
    )

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    transaction_id: Mapped[int] = mapped_column(
        ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False
    )
    note_index: Mapped[int] = mapped_column(Integer, nullable=False)
    pool: Mapped[str] = mapped_column(String(16), nullable=False)
    to_address: Mapped[str] = mapped_column(Text, nullable=False)
    value_zatoshis: Mapped[int] = mapped_column(BigInteger, nullable=False)
    memo: Mapped[str | None] = mapped_column(Text, nullable=True)
