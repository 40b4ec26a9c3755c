"""
Full-store rebuild after a checkpoint conflict.

Tree frontiers cannot be reconstructed from partial state, so a diverged
tree history is repaired by discarding the user's wallet database and mirror
rows, bootstrapping again at the same birthday and rescanning from there.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from loguru import logger

from shieldwallet.errors import CheckpointConflictError
from shieldwallet.wallet.bootstrap import AccountBootstrapper
from shieldwallet.wallet.keys import FullViewingKey
from shieldwallet.wallet.models import Account, ScanSummary
from shieldwallet.wallet.scanner import BlockchainScanner
from shieldwallet.wallet.store import WalletStore

if TYPE_CHECKING:
    from shieldwallet.mirror.sync import MirrorSynchronizer


class StoreRebuilder:
    def __init__(
        self,
        bootstrapper: AccountBootstrapper,
        mirror: MirrorSynchronizer | None = None,
    ):
        self.bootstrapper = bootstrapper
        self.mirror = mirror

    async def rebuild(
        self,
        store: WalletStore,
        user_id: str,
        viewing_key: FullViewingKey,
        birthday_height: int,
    ) -> tuple[WalletStore, Account]:
        """
        Destroy ``store`` and return a freshly bootstrapped replacement.

        The old handle is unusable afterwards; callers continue with the
        returned one.
        """
        path = store.path
        logger.info(f"Rebuilding wallet database for {user_id} from birthday {birthday_height}")

        store.destroy()
        if self.mirror is not None:
            await self.mirror.clear_user(user_id)

        fresh = WalletStore.open(path)
        try:
            account = await self.bootstrapper.ensure_account(fresh, viewing_key, birthday_height)
        except BaseException:
            fresh.close()
            raise
        return fresh, account


async def scan_with_conflict_recovery(
    scanner: BlockchainScanner,
    rebuilder: StoreRebuilder,
    store: WalletStore,
    account: Account,
    viewing_key: FullViewingKey,
    user_id: str,
) -> tuple[ScanSummary, WalletStore, Account]:
    """
    Scan to the tip, rebuilding once on a checkpoint conflict.

    Returns the summary together with the store and account to keep using,
    which differ from the arguments when a rebuild happened. A second
    conflict on the rebuilt store propagates.
    """
    try:
        summary = await scanner.scan(store, account, viewing_key)
        return summary, store, account
    except CheckpointConflictError as e:
        logger.warning(f"Checkpoint conflict for {user_id}: {e}")

    store, account = await rebuilder.rebuild(
        store, user_id, viewing_key, account.birthday_height
    )
    try:
        summary = await scanner.scan(store, account, viewing_key)
    except BaseException:
        store.close()
        raise
    logger.info(
        f"Rescan after rebuild for {user_id} complete: {summary.blocks_scanned} blocks, "
        f"{summary.notes_discovered} notes"
    )
    return summary, store, account
