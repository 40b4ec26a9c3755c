"""
Wallet functionality: keys, notes, scanning and spending.
"""

from shieldwallet.wallet.keys import AccountKeys, FullViewingKey
from shieldwallet.wallet.models import ScanSummary, WalletBalance

__all__ = ["AccountKeys", "FullViewingKey", "ScanSummary", "WalletBalance"]
