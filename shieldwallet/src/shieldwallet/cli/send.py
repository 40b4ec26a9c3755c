"""
Fee estimation and send commands.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from loguru import logger
from shieldcore.cli_common import ResolvedSyncSettings, log_resolved_settings, setup_cli
from shieldcore.models import zatoshis_to_coins

from shieldwallet.cli import app
from shieldwallet.cli.common import open_service, resolve_or_exit
from shieldwallet.cli.mnemonic import DEFAULT_USER_ID, load_credentials
from shieldwallet.errors import WalletOperationError
from shieldwallet.wallet.service import WalletCredentials


@app.command("estimate-fee")
def estimate_fee(
    destination: Annotated[str, typer.Argument(help="Destination shielded address")],
    amount: Annotated[int, typer.Option("--amount", "-a", help="Amount in zatoshis")],
    memo: Annotated[str | None, typer.Option("--memo", help="Text memo (max 511 bytes)")] = None,
    user_id: Annotated[str, typer.Option("--user-id", "-u", help="Wallet owner")] = DEFAULT_USER_ID,
    mnemonic: Annotated[str | None, typer.Option("--mnemonic", help="BIP39 mnemonic")] = None,
    mnemonic_file: Annotated[
        Path | None, typer.Option("--mnemonic-file", "-f", help="Path to mnemonic file")
    ] = None,
    network: Annotated[str | None, typer.Option("--network", "-n", help="main or test")] = None,
    lightwalletd_url: Annotated[
        str | None, typer.Option("--lightwalletd-url", help="lightwalletd endpoint")
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
    """Show the fee of a payment without building it."""
    settings = setup_cli(log_level)
    credentials = load_credentials(user_id, mnemonic, mnemonic_file)
    resolved = resolve_or_exit(
        settings,
        network=network,
        lightwalletd_url=lightwalletd_url,
        batch_size=None,
        data_dir=data_dir,
    )
    log_resolved_settings(resolved)

    asyncio.run(_estimate_fee(credentials, resolved, destination, amount, memo))


async def _estimate_fee(
    credentials: WalletCredentials,
    resolved: ResolvedSyncSettings,
    destination: str,
    amount: int,
    memo: str | None,
) -> None:
    service = await open_service(resolved)
    try:
        estimate = await service.estimate_fee(credentials, destination, amount, memo)
    except WalletOperationError as e:
        logger.error(f"Fee estimation failed: {e.cause}")
        raise typer.Exit(1)
    finally:
        await service.close()

    print(f"\nAmount: {zatoshis_to_coins(estimate.amount)} ({estimate.amount:,} zat)")
    print(f"Fee:    {zatoshis_to_coins(estimate.fee)} ({estimate.fee:,} zat)")
    print(f"Total:  {zatoshis_to_coins(estimate.total)} ({estimate.total:,} zat)")
    print(f"Inputs: {estimate.inputs}, change: {estimate.change:,} zat")


@app.command()
def send(
    destination: Annotated[str, typer.Argument(help="Destination shielded address")],
    amount: Annotated[int, typer.Option("--amount", "-a", help="Amount in zatoshis")],
    memo: Annotated[str | None, typer.Option("--memo", help="Text memo (max 511 bytes)")] = None,
    user_id: Annotated[str, typer.Option("--user-id", "-u", help="Wallet owner")] = DEFAULT_USER_ID,
    mnemonic: Annotated[str | None, typer.Option("--mnemonic", help="BIP39 mnemonic")] = None,
    mnemonic_file: Annotated[
        Path | None, typer.Option("--mnemonic-file", "-f", help="Path to mnemonic file")
    ] = None,
    network: Annotated[str | None, typer.Option("--network", "-n", help="main or test")] = None,
    lightwalletd_url: Annotated[
        str | None, typer.Option("--lightwalletd-url", help="lightwalletd endpoint")
    ] = None,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompt")] = False,
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
    """Send a shielded payment."""
    settings = setup_cli(log_level)
    credentials = load_credentials(user_id, mnemonic, mnemonic_file)
    resolved = resolve_or_exit(
        settings,
        network=network,
        lightwalletd_url=lightwalletd_url,
        batch_size=None,
        data_dir=data_dir,
    )
    log_resolved_settings(resolved)

    asyncio.run(_send(credentials, resolved, destination, amount, memo, yes))


async def _send(
    credentials: WalletCredentials,
    resolved: ResolvedSyncSettings,
    destination: str,
    amount: int,
    memo: str | None,
    skip_confirmation: bool,
) -> None:
    service = await open_service(resolved)
    try:
        if not skip_confirmation:
            estimate = await service.estimate_fee(credentials, destination, amount, memo)
            print(f"\nSending {estimate.amount:,} zat to {destination}")
            print(f"Fee: {estimate.fee:,} zat, total {estimate.total:,} zat")
            if not typer.confirm("Broadcast this transaction?", default=False):
                typer.echo("Send cancelled")
                return

        result = await service.send(credentials, destination, amount, memo)
    except WalletOperationError as e:
        logger.error(f"Send failed: {e.cause}")
        raise typer.Exit(1)
    finally:
        await service.close()

    print(f"\nTransaction broadcast: {result.txid}")
    print(f"Fee: {result.fee:,} zat")
    print(f"Explorer: {result.explorer_url}")
