"""
Shield wallet service.

Every balance, scan or send request for a user runs the same pipeline while
holding that user's account lock:

    derive keys -> open wallet database -> bootstrap -> scan to tip -> operation

Scans retry transient chain service failures with exponential backoff and
rebuild the wallet database once on a checkpoint conflict. After a successful
operation a snapshot of the wallet database is projected into the relational
mirror in the background, off the request's critical path.
"""

from __future__ import annotations

import asyncio
import functools
from collections.abc import AsyncIterator
from concurrent.futures import Executor, ThreadPoolExecutor
from contextlib import asynccontextmanager
from dataclasses import dataclass

from loguru import logger
from shieldcore.cli_common import ResolvedSyncSettings
from shieldcore.models import ShieldedPool, get_network_params
from shieldcore.paths import get_wallet_db_path
from shieldcore.tasks import BackgroundTaskGroup

from shieldwallet.chain.base import ChainService
from shieldwallet.chain.lightwalletd import LightwalletdClient
from shieldwallet.errors import (
    BroadcastRejectedError,
    ChainServiceError,
    InsufficientFundsError,
    InvalidAddressError,
    MemoTooLongError,
    ProofGenerationError,
    ShieldWalletError,
    WalletOperationError,
)
from shieldwallet.mirror.history import DEFAULT_PAGE_SIZE, HistoryPage, TransactionHistory
from shieldwallet.mirror.sync import MirrorSynchronizer
from shieldwallet.wallet.address import parse_address_for_network
from shieldwallet.wallet.bootstrap import AccountBootstrapper
from shieldwallet.wallet.keys import AccountKeys
from shieldwallet.wallet.locks import AccountLockRegistry
from shieldwallet.wallet.models import Account, ScanSummary, WalletBalance
from shieldwallet.wallet.note_encryption import encode_memo
from shieldwallet.wallet.proposal import TransactionBuilder, TransactionProposer
from shieldwallet.wallet.prover import LocalProver, SpendProver
from shieldwallet.wallet.recovery import StoreRebuilder, scan_with_conflict_recovery
from shieldwallet.wallet.scanner import BlockchainScanner
from shieldwallet.wallet.store import WalletStore


@dataclass
class WalletCredentials:
    """Who is asking: the user's identifier and seed material."""

    user_id: str
    mnemonic: str
    birthday_height: int | None = None
    passphrase: str = ""


@dataclass
class FeeEstimate:
    amount: int
    fee: int
    inputs: int
    change: int

    @property
    def total(self) -> int:
        return self.amount + self.fee


@dataclass
class SendResult:
    txid: str
    amount: int
    fee: int
    explorer_url: str


@dataclass
class _WalletSession:
    keys: AccountKeys
    store: WalletStore
    account: Account
    summary: ScanSummary


class ShieldWalletService:
    """
    Facade over the scan, balance and send pipelines of many users.

    All collaborators are injected; ``from_settings`` wires the production
    ones. The only failure callers see is WalletOperationError, with the
    internal error chained as ``__cause__``.
    """

    def __init__(
        self,
        settings: ResolvedSyncSettings,
        chain: ChainService,
        locks: AccountLockRegistry | None = None,
        mirror: MirrorSynchronizer | None = None,
        prover: SpendProver | None = None,
        executor: Executor | None = None,
    ):
        self.settings = settings
        self.chain = chain
        self.locks = locks if locks is not None else AccountLockRegistry()
        self.mirror = mirror
        self.params = get_network_params(settings.network)

        self._owns_executor = executor is None
        self.executor = executor or ThreadPoolExecutor(
            max_workers=settings.worker_threads, thread_name_prefix="shield-worker"
        )

        self.bootstrapper = AccountBootstrapper(chain, settings.network)
        self.scanner = BlockchainScanner(chain, settings.batch_size, self.executor)
        self.rebuilder = StoreRebuilder(self.bootstrapper, mirror)
        self.proposer = TransactionProposer(settings.network)
        self.builder = TransactionBuilder(prover or LocalProver(), self.executor)
        self.background = BackgroundTaskGroup()

    @classmethod
    async def from_settings(cls, settings: ResolvedSyncSettings) -> ShieldWalletService:
        chain = LightwalletdClient(
            settings.lightwalletd_url,
            connect_timeout=settings.connect_timeout,
            read_timeout=settings.read_timeout,
        )
        mirror = None
        if settings.mirror_url is not None:
            mirror = await MirrorSynchronizer.connect(settings.mirror_url)
        return cls(settings, chain, mirror=mirror)

    async def close(self) -> None:
        await self.background.drain()
        await self.chain.close()
        if self.mirror is not None:
            await self.mirror.close()
        if self._owns_executor and isinstance(self.executor, ThreadPoolExecutor):
            self.executor.shutdown(wait=False)

    async def flush_mirror(self) -> None:
        """Wait for background mirror syncs still in flight."""
        await self.background.drain()

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _derive_keys(self, credentials: WalletCredentials) -> AccountKeys:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self.executor,
            functools.partial(
                AccountKeys.from_mnemonic,
                credentials.mnemonic,
                self.settings.network,
                credentials.passphrase,
            ),
        )

    async def _open_and_scan(
        self, keys: AccountKeys, credentials: WalletCredentials
    ) -> _WalletSession:
        user_id = credentials.user_id
        path = get_wallet_db_path(user_id, self.settings.data_dir)
        birthday = credentials.birthday_height or self.settings.birthday_height

        store = await asyncio.to_thread(WalletStore.open, path)
        try:
            account = await self.bootstrapper.ensure_account(store, keys.viewing_key, birthday)
            summary, store, account = await scan_with_conflict_recovery(
                self.scanner, self.rebuilder, store, account, keys.viewing_key, user_id
            )
        except BaseException:
            store.close()
            raise
        return _WalletSession(keys=keys, store=store, account=account, summary=summary)

    async def _open_synced(self, credentials: WalletCredentials) -> _WalletSession:
        keys = await self._derive_keys(credentials)
        attempts = max(1, self.settings.scan_retry_attempts)

        for attempt in range(1, attempts):
            try:
                return await self._open_and_scan(keys, credentials)
            except ChainServiceError as e:
                delay = self.settings.scan_retry_base_delay * 2 ** (attempt - 1)
                logger.warning(
                    f"Scan attempt {attempt}/{attempts} for {credentials.user_id} failed: "
                    f"{e}. Retrying in {delay:.1f}s"
                )
                await asyncio.sleep(delay)

        return await self._open_and_scan(keys, credentials)

    @asynccontextmanager
    async def _operation(
        self, credentials: WalletCredentials, name: str
    ) -> AsyncIterator[_WalletSession]:
        async with self.locks.hold(credentials.user_id):
            try:
                session = await self._open_synced(credentials)
                try:
                    yield session
                    await self._schedule_mirror_sync(credentials.user_id, session.store)
                finally:
                    session.store.close()
            except WalletOperationError:
                raise
            except (ShieldWalletError, ValueError) as e:
                raise self._user_error(name, credentials.user_id, e) from e

    async def _schedule_mirror_sync(self, user_id: str, store: WalletStore) -> None:
        if self.mirror is None:
            return
        generation = self.mirror.generation(user_id)
        snapshot = await asyncio.to_thread(store.snapshot)
        self.background.spawn(
            f"mirror-sync-{user_id}", self.mirror.sync(user_id, snapshot, generation)
        )

    def _user_error(self, operation: str, user_id: str, error: Exception) -> WalletOperationError:
        if isinstance(error, ProofGenerationError):
            logger.opt(exception=error).error(f"{operation} for {user_id}: {error}")
            return WalletOperationError("Failed to build transaction")
        if isinstance(
            error,
            InsufficientFundsError | InvalidAddressError | MemoTooLongError | ValueError,
        ):
            logger.info(f"{operation} for {user_id} refused: {error}")
            return WalletOperationError(str(error))
        if isinstance(error, BroadcastRejectedError):
            return WalletOperationError(str(error))
        if isinstance(error, ChainServiceError):
            logger.error(f"{operation} for {user_id}: chain service failure: {error}")
            return WalletOperationError(f"Chain service unavailable: {error}")
        logger.opt(exception=error).error(f"{operation} for {user_id} failed: {error}")
        return WalletOperationError(f"Wallet error: {error}")

    def _check_destination(
        self, operation: str, user_id: str, to_address: str, memo: str | None
    ) -> None:
        """Reject bad destinations before any scanning or proposal work."""
        try:
            parse_address_for_network(to_address, self.settings.network)
            encode_memo(memo)
        except (InvalidAddressError, MemoTooLongError) as e:
            raise self._user_error(operation, user_id, e) from e

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def scan(self, credentials: WalletCredentials) -> ScanSummary:
        """Bring the user's wallet database up to the chain tip."""
        async with self._operation(credentials, "scan") as session:
            return session.summary

    async def get_balance(self, credentials: WalletCredentials) -> WalletBalance:
        """Scan, then report the unspent note totals per pool."""
        async with self._operation(credentials, "balance") as session:
            totals = await asyncio.to_thread(session.store.balance)
            synced = await asyncio.to_thread(session.store.last_scanned_height)
            return WalletBalance(
                sapling=totals[ShieldedPool.SAPLING],
                orchard=totals[ShieldedPool.ORCHARD],
                last_synced_height=synced,
                chain_tip=session.summary.end_height,
                blocks_scanned=session.summary.blocks_scanned,
                notes_found=session.summary.notes_discovered,
            )

    async def estimate_fee(
        self,
        credentials: WalletCredentials,
        to_address: str,
        amount: int,
        memo: str | None = None,
    ) -> FeeEstimate:
        """Fee of sending ``amount`` to ``to_address``, without proving anything."""
        self._check_destination("estimate_fee", credentials.user_id, to_address, memo)
        async with self._operation(credentials, "estimate_fee") as session:
            proposal = await asyncio.to_thread(
                self.proposer.propose, session.store, to_address, amount, memo
            )
            return FeeEstimate(
                amount=amount,
                fee=proposal.fee,
                inputs=len(proposal.notes),
                change=proposal.change,
            )

    async def send(
        self,
        credentials: WalletCredentials,
        to_address: str,
        amount: int,
        memo: str | None = None,
    ) -> SendResult:
        """
        Build, prove, sign and broadcast a payment.

        The spent notes and the payment are recorded only once the chain
        service accepted the transaction.
        """
        self._check_destination("send", credentials.user_id, to_address, memo)
        async with self._operation(credentials, "send") as session:
            proposal = await asyncio.to_thread(
                self.proposer.propose, session.store, to_address, amount, memo
            )
            built = await self.builder.build(proposal, session.keys, session.store)

            result = await self.chain.broadcast(built.raw)
            if not result.accepted:
                raise BroadcastRejectedError(result.error_code, result.reason)

            await asyncio.to_thread(session.store.record_sent_transaction, built.to_record())
            txid = result.txid or built.txid
            logger.info(
                f"Sent {amount} zatoshis to {to_address[:16]}... "
                f"(fee {proposal.fee}, txid {txid})"
            )
            return SendResult(
                txid=txid,
                amount=amount,
                fee=proposal.fee,
                explorer_url=self.params.explorer_tx_url(txid),
            )

    async def history(
        self, user_id: str, page: int = 0, page_size: int = DEFAULT_PAGE_SIZE
    ) -> HistoryPage:
        """One page of the user's mirrored transaction history."""
        if self.mirror is None:
            raise WalletOperationError("Transaction history requires the relational mirror")
        history = TransactionHistory(self.mirror.session_factory, self.settings.network)
        try:
            return await history.list_transactions(user_id, page, page_size)
        except ValueError as e:
            raise WalletOperationError(str(e)) from e
