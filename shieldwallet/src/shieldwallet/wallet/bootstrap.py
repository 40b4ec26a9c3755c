"""
Account bootstrap: the account row plus the birthday-anchored checkpoints.
"""

from __future__ import annotations

import asyncio

from loguru import logger
from shieldcore.models import NetworkType, ShieldedPool, default_birthday

from shieldwallet.chain.base import ChainService
from shieldwallet.errors import AccountMismatchError, TreeStateUnavailableError
from shieldwallet.wallet.keys import FullViewingKey
from shieldwallet.wallet.models import Account
from shieldwallet.wallet.store import WalletStore
from shieldwallet.wallet.tree import Frontier


def resolve_birthday(network: NetworkType, birthday_height: int | None) -> int:
    """Explicit birthday, or the pool activation height of ``network``."""
    if birthday_height is None:
        return default_birthday(network)
    if birthday_height < 1:
        raise ValueError(f"Birthday height must be at least 1, got {birthday_height}")
    return birthday_height


class AccountBootstrapper:
    """
    Creates the account of a fresh wallet database.

    The tree snapshot is fetched for ``birthday - 1``: it describes the trees
    at the end of the block before the birthday, which is exactly the state
    scanning from the birthday builds on.
    """

    def __init__(self, chain: ChainService, network: NetworkType):
        self.chain = chain
        self.network = network

    async def ensure_account(
        self,
        store: WalletStore,
        viewing_key: FullViewingKey,
        birthday_height: int | None = None,
    ) -> Account:
        """
        Return the store's account, creating it if the store is empty.

        Raises:
            AccountMismatchError: The store belongs to another viewing key
            TreeStateUnavailableError: No usable tree snapshot; nothing is written
        """
        encoded = viewing_key.encode()
        existing = await asyncio.to_thread(store.get_account)
        if existing is not None:
            if existing.viewing_key != encoded:
                raise AccountMismatchError(
                    f"Wallet database {store.path} belongs to a different viewing key"
                )
            return existing

        birthday = resolve_birthday(self.network, birthday_height)
        anchor_height = birthday - 1
        logger.info(f"Bootstrapping account with birthday {birthday}")

        tree_state = await self.chain.get_tree_state(anchor_height)
        if tree_state.height != anchor_height:
            raise TreeStateUnavailableError(
                "get_tree_state",
                f"service returned tree state for {tree_state.height}",
                anchor_height,
            )

        try:
            frontiers: dict[ShieldedPool, Frontier] = {
                pool: tree_state.frontier(pool) for pool in ShieldedPool
            }
        except ValueError as e:
            raise TreeStateUnavailableError(
                "get_tree_state", f"undecodable frontier: {e}", anchor_height
            ) from e

        account = await asyncio.to_thread(
            store.create_account, encoded, birthday, anchor_height, frontiers
        )
        logger.info(
            f"Account {account.account_id} created; checkpoints at {anchor_height} "
            f"(sapling {frontiers[ShieldedPool.SAPLING].size}, "
            f"orchard {frontiers[ShieldedPool.ORCHARD].size} commitments)"
        )
        return account
