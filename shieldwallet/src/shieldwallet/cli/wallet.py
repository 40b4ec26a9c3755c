"""
Wallet commands: generate, balance, scan, config-init.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from loguru import logger
from shieldcore.cli_common import (
    ResolvedSyncSettings,
    log_resolved_settings,
    setup_cli,
    setup_logging,
)
from shieldcore.models import NetworkType, ShieldedPool, zatoshis_to_coins
from shieldcore.tasks import run_periodic_task

from shieldwallet.cli import app
from shieldwallet.cli.common import open_service, resolve_or_exit
from shieldwallet.cli.mnemonic import (
    DEFAULT_USER_ID,
    generate_mnemonic_secure,
    load_credentials,
    save_mnemonic_file,
)
from shieldwallet.errors import WalletOperationError
from shieldwallet.wallet.keys import AccountKeys
from shieldwallet.wallet.models import ScanSummary
from shieldwallet.wallet.service import WalletCredentials


@app.command()
def generate(
    word_count: Annotated[
        int, typer.Option("--words", "-w", help="Number of words (12, 15, 18, 21, or 24)")
    ] = 24,
    network: Annotated[str, typer.Option("--network", "-n", help="main or test")] = "main",
    output_file: Annotated[
        Path | None, typer.Option("--output", "-o", help="Save the mnemonic to this file")
    ] = None,
) -> None:
    """Generate a new BIP39 mnemonic and show the account's addresses."""
    setup_logging()

    try:
        mnemonic = generate_mnemonic_secure(word_count)
        keys = AccountKeys.from_mnemonic(mnemonic, NetworkType(network))
    except ValueError as e:
        logger.error(f"Failed to generate wallet: {e}")
        raise typer.Exit(1)

    typer.echo("\n" + "=" * 80)
    typer.echo("GENERATED MNEMONIC - WRITE THIS DOWN AND KEEP IT SAFE!")
    typer.echo("=" * 80)
    typer.echo(f"\n{mnemonic}\n")
    typer.echo("=" * 80)
    typer.echo(f"Orchard address: {keys.address(ShieldedPool.ORCHARD)}")
    typer.echo(f"Sapling address: {keys.address(ShieldedPool.SAPLING)}")
    typer.echo(f"Viewing key fingerprint: {keys.viewing_key.fingerprint}")
    typer.echo("=" * 80 + "\n")

    if output_file is not None:
        if output_file.exists():
            logger.warning(f"Mnemonic file already exists: {output_file}")
            if not typer.confirm("Overwrite existing file?", default=False):
                typer.echo("Wallet generation cancelled")
                raise typer.Exit(0)
        save_mnemonic_file(mnemonic, output_file)
        typer.echo(f"Mnemonic saved to: {output_file}")
        typer.echo("KEEP THIS FILE SECURE - IT CONTROLS YOUR FUNDS!")


@app.command()
def balance(
    user_id: Annotated[str, typer.Option("--user-id", "-u", help="Wallet owner")] = DEFAULT_USER_ID,
    mnemonic: Annotated[str | None, typer.Option("--mnemonic", help="BIP39 mnemonic")] = None,
    mnemonic_file: Annotated[
        Path | None, typer.Option("--mnemonic-file", "-f", help="Path to mnemonic file")
    ] = None,
    birthday: Annotated[
        int | None, typer.Option("--birthday", help="Birthday height for a new wallet")
    ] = None,
    network: Annotated[str | None, typer.Option("--network", "-n", help="main or test")] = None,
    lightwalletd_url: Annotated[
        str | None, typer.Option("--lightwalletd-url", help="lightwalletd endpoint")
    ] = None,
    batch_size: Annotated[
        int | None, typer.Option("--batch-size", help="Blocks per scan batch")
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
    """Scan to the chain tip and show the wallet balance."""
    settings = setup_cli(log_level)
    credentials = load_credentials(user_id, mnemonic, mnemonic_file, birthday)
    resolved = resolve_or_exit(
        settings,
        network=network,
        lightwalletd_url=lightwalletd_url,
        batch_size=batch_size,
        data_dir=data_dir,
    )
    log_resolved_settings(resolved)

    asyncio.run(_show_balance(credentials, resolved))


async def _show_balance(credentials: WalletCredentials, resolved: ResolvedSyncSettings) -> None:
    service = await open_service(resolved)
    try:
        result = await service.get_balance(credentials)
    except WalletOperationError as e:
        logger.error(f"Balance failed: {e.cause}")
        raise typer.Exit(1)
    finally:
        await service.close()

    status = "synced" if result.synced else "syncing"
    print(f"\nBalance ({status} at {result.last_synced_height}, tip {result.chain_tip}):")
    print(f"  Sapling: {zatoshis_to_coins(result.sapling):>18} ({result.sapling:,} zat)")
    print(f"  Orchard: {zatoshis_to_coins(result.orchard):>18} ({result.orchard:,} zat)")
    print(f"  Total:   {result.formatted:>18} ({result.total:,} zat)")


def _print_summary(summary: ScanSummary) -> None:
    if summary.caught_up_already:
        print(f"Already synced to {summary.end_height}")
        return
    print(
        f"Scanned {summary.blocks_scanned:,} blocks [{summary.start_height}, "
        f"{summary.end_height}] in {summary.batches} batches, "
        f"{summary.notes_discovered} notes found"
    )


@app.command()
def scan(
    user_id: Annotated[str, typer.Option("--user-id", "-u", help="Wallet owner")] = DEFAULT_USER_ID,
    mnemonic: Annotated[str | None, typer.Option("--mnemonic", help="BIP39 mnemonic")] = None,
    mnemonic_file: Annotated[
        Path | None, typer.Option("--mnemonic-file", "-f", help="Path to mnemonic file")
    ] = None,
    birthday: Annotated[
        int | None, typer.Option("--birthday", help="Birthday height for a new wallet")
    ] = None,
    network: Annotated[str | None, typer.Option("--network", "-n", help="main or test")] = None,
    lightwalletd_url: Annotated[
        str | None, typer.Option("--lightwalletd-url", help="lightwalletd endpoint")
    ] = None,
    batch_size: Annotated[
        int | None, typer.Option("--batch-size", help="Blocks per scan batch")
    ] = None,
    watch: Annotated[
        float | None,
        typer.Option("--watch", help="Keep scanning every N seconds until interrupted"),
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
    """Bring the wallet database up to the chain tip."""
    settings = setup_cli(log_level)
    credentials = load_credentials(user_id, mnemonic, mnemonic_file, birthday)
    resolved = resolve_or_exit(
        settings,
        network=network,
        lightwalletd_url=lightwalletd_url,
        batch_size=batch_size,
        data_dir=data_dir,
    )
    log_resolved_settings(resolved)

    if watch is not None and watch <= 0:
        logger.error("--watch interval must be positive")
        raise typer.Exit(1)

    asyncio.run(_scan(credentials, resolved, watch))


async def _scan(
    credentials: WalletCredentials, resolved: ResolvedSyncSettings, watch: float | None
) -> None:
    service = await open_service(resolved)
    try:
        if watch is None:
            try:
                _print_summary(await service.scan(credentials))
            except WalletOperationError as e:
                logger.error(f"Scan failed: {e.cause}")
                raise typer.Exit(1)
            await service.flush_mirror()
            return

        async def _tick() -> None:
            _print_summary(await service.scan(credentials))

        await run_periodic_task("Wallet scan", _tick, watch)
    finally:
        await service.close()


@app.command()
def config_init(
    data_dir: Annotated[
        Path | None,
        typer.Option(
            "--data-dir",
            "-d",
            envvar="SHIELD_DATA_DIR",
            help="Data directory for Shield Wallet files",
        ),
    ] = None,
) -> None:
    """Initialize the config file with default settings."""
    from shieldcore.paths import get_default_data_dir
    from shieldcore.settings import ensure_config_file, reset_settings

    reset_settings()

    if data_dir is None:
        data_dir = get_default_data_dir()

    config_path = ensure_config_file(data_dir)
    typer.echo(f"Config file created at: {config_path}")
    typer.echo("\nAll settings are commented out by default.")
    typer.echo("Edit the file to customize your configuration.")
    typer.echo("\nPriority (highest to lowest):")
    typer.echo("  1. CLI arguments")
    typer.echo("  2. Environment variables")
    typer.echo("  3. Config file")
    typer.echo("  4. Built-in defaults")
