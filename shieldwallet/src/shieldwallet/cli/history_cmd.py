"""
History command.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from loguru import logger
from shieldcore.cli_common import ResolvedSyncSettings, setup_cli

from shieldwallet.cli import app
from shieldwallet.cli.common import open_service, resolve_or_exit
from shieldwallet.cli.mnemonic import DEFAULT_USER_ID, load_credentials
from shieldwallet.errors import WalletOperationError
from shieldwallet.mirror.history import DEFAULT_PAGE_SIZE
from shieldwallet.wallet.service import WalletCredentials


@app.command()
def history(
    page: Annotated[int, typer.Option("--page", "-p", help="Page number, starting at 0")] = 0,
    page_size: Annotated[
        int, typer.Option("--page-size", "-n", help="Entries per page (max 100)")
    ] = DEFAULT_PAGE_SIZE,
    sync: Annotated[
        bool, typer.Option("--sync/--no-sync", help="Scan to the chain tip first")
    ] = True,
    user_id: Annotated[str, typer.Option("--user-id", "-u", help="Wallet owner")] = DEFAULT_USER_ID,
    mnemonic: Annotated[str | None, typer.Option("--mnemonic", help="BIP39 mnemonic")] = None,
    mnemonic_file: Annotated[
        Path | None, typer.Option("--mnemonic-file", "-f", help="Path to mnemonic file")
    ] = None,
    network: Annotated[str | None, typer.Option("--network", help="main or test")] = None,
    lightwalletd_url: Annotated[
        str | None, typer.Option("--lightwalletd-url", help="lightwalletd endpoint")
    ] = None,
    mirror_url: Annotated[
        str | None, typer.Option("--mirror-url", help="SQLAlchemy URL of the mirror database")
    ] = None,
    data_dir: Annotated[
        Path | None,
        typer.Option(
            "--data-dir",
            help="Data directory (default: ~/.shield-wallet or $SHIELD_DATA_DIR)",
        ),
    ] = None,
    log_level: Annotated[
        str | None,
        typer.Option("--log-level", "-l", help="Log level"),
    ] = None,
) -> None:
    """View the wallet's transaction history."""
    settings = setup_cli(log_level)
    credentials = load_credentials(user_id, mnemonic, mnemonic_file) if sync else None
    resolved = resolve_or_exit(
        settings,
        network=network,
        lightwalletd_url=lightwalletd_url,
        batch_size=None,
        data_dir=data_dir,
        mirror_url=mirror_url,
    )
    if resolved.mirror_url is None:
        logger.error("Transaction history requires the mirror (mirror.enabled = true)")
        raise typer.Exit(1)

    asyncio.run(_show_history(user_id, credentials, resolved, page, page_size))


async def _show_history(
    user_id: str,
    credentials: WalletCredentials | None,
    resolved: ResolvedSyncSettings,
    page: int,
    page_size: int,
) -> None:
    service = await open_service(resolved)
    try:
        if credentials is not None:
            await service.scan(credentials)
            await service.flush_mirror()
        result = await service.history(user_id, page, page_size)
    except WalletOperationError as e:
        logger.error(f"History failed: {e.cause}")
        raise typer.Exit(1)
    finally:
        await service.close()

    if not result.entries:
        print("\nNo transactions found.")
        return

    print(f"\nTransaction history (page {result.page}, {result.total} total):")
    print("=" * 120)
    print(f"{'Height':>10} {'Direction':<9} {'Amount (zat)':>16} {'Fee':>8}  {'TXID':<64}")
    print("-" * 120)
    for entry in result.entries:
        height = str(entry.block_height) if entry.confirmed else "pending"
        fee = f"{entry.fee_zatoshis:,}" if entry.fee_zatoshis is not None else "?"
        print(
            f"{height:>10} {entry.direction:<9} {entry.amount_zatoshis:>16,} {fee:>8}  "
            f"{entry.txid:<64}"
        )
        if entry.memo:
            print(f"{'':>10} memo: {entry.memo}")
    print("=" * 120)
    if result.has_more:
        print(f"More entries: --page {result.page + 1}")
