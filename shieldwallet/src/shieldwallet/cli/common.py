"""
Settings and service wiring shared by the wallet commands.
"""

from __future__ import annotations

from pathlib import Path

import typer
from loguru import logger
from shieldcore.cli_common import ResolvedSyncSettings, resolve_sync_settings
from shieldcore.settings import ShieldSettings

from shieldwallet.wallet.service import ShieldWalletService


def resolve_or_exit(
    settings: ShieldSettings,
    *,
    network: str | None,
    lightwalletd_url: str | None,
    batch_size: int | None,
    data_dir: Path | None,
    mirror_url: str | None = None,
) -> ResolvedSyncSettings:
    try:
        return resolve_sync_settings(
            settings,
            network=network,
            lightwalletd_url=lightwalletd_url,
            batch_size=batch_size,
            data_dir=data_dir,
            mirror_url=mirror_url,
        )
    except ValueError as e:
        logger.error(str(e))
        raise typer.Exit(1)


async def open_service(resolved: ResolvedSyncSettings) -> ShieldWalletService:
    return await ShieldWalletService.from_settings(resolved)
