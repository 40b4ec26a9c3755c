"""
Shielded wallet synchronization engine with a pluggable chain service.
"""

from shieldwallet.chain.base import ChainService
from shieldwallet.wallet.service import ShieldWalletService, WalletCredentials

__all__ = ["ChainService", "ShieldWalletService", "WalletCredentials"]
