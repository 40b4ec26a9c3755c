"""
Relational mirror of wallet databases, shared by all users.
"""

from shieldwallet.mirror.history import HistoryEntry, HistoryPage, TransactionHistory
from shieldwallet.mirror.sync import MirrorSynchronizer, MirrorSyncStats

__all__ = [
    "HistoryEntry",
    "HistoryPage",
    "MirrorSyncStats",
    "MirrorSynchronizer",
    "TransactionHistory",
]
