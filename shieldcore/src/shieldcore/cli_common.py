"""
Common CLI components for Shield Wallet.

Architecture:
- Resolver functions: Take CLI args + settings and return resolved values
- Setup functions: Common initialization (logging, settings)
- Mnemonic loading: Unified mnemonic resolution from multiple sources

The resolved values are plain dataclasses that the wallet service receives
as constructor arguments, so no component below the CLI touches settings or
the environment again.

Usage:
    from shieldcore.cli_common import resolve_sync_settings, setup_cli

    @app.command()
    def scan(network: Annotated[str | None, typer.Option("--network")] = None, ...):
        settings = setup_cli(log_level)
        resolved = resolve_sync_settings(settings, network=network, ...)
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from shieldcore.models import NetworkType, default_birthday
from shieldcore.settings import ShieldSettings, get_settings, reset_settings


@dataclass
class ResolvedSyncSettings:
    """Resolved scan/send settings ready for use."""

    network: NetworkType
    lightwalletd_url: str
    connect_timeout: float
    read_timeout: float
    birthday_height: int
    batch_size: int
    scan_retry_attempts: int
    scan_retry_base_delay: float
    worker_threads: int
    data_dir: Path
    mirror_url: str | None


@dataclass
class ResolvedMnemonic:
    """Resolved mnemonic and where it came from."""

    mnemonic: str
    source: str


def setup_logging(level: str = "INFO") -> None:
    """
    Configure loguru logging with consistent format.

    Args:
        level: Log level (TRACE, DEBUG, INFO, WARNING, ERROR)
    """
    logger.remove()
    logger.add(
        sys.stderr,
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
            "<level>{message}</level>"
        ),
        level=level.upper(),
        colorize=True,
    )


def setup_cli(log_level: str | None = None) -> ShieldSettings:
    """
    Common CLI setup: reset settings cache, configure logging, return settings.

    Log level priority: CLI argument > settings (env/config) > default "INFO"
    """
    reset_settings()
    settings = get_settings()

    effective_log_level = log_level if log_level is not None else settings.logging.level
    setup_logging(effective_log_level)

    return settings


def resolve_sync_settings(
    settings: ShieldSettings,
    *,
    network: NetworkType | str | None = None,
    lightwalletd_url: str | None = None,
    birthday_height: int | None = None,
    batch_size: int | None = None,
    data_dir: Path | None = None,
    mirror_url: str | None = None,
) -> ResolvedSyncSettings:
    """
    Resolve scan settings with priority: CLI > Settings (env + config) > Defaults.

    The endpoint defaults to the one configured for the resolved network and the
    birthday defaults to that network's pool activation height.
    """
    resolved_network = (
        NetworkType(network) if network is not None else settings.network_config.network
    )

    if lightwalletd_url is not None:
        resolved_url = lightwalletd_url
    elif resolved_network is NetworkType.TESTNET:
        resolved_url = settings.lightwalletd.testnet_url
    else:
        resolved_url = settings.lightwalletd.mainnet_url

    if birthday_height is not None:
        resolved_birthday = birthday_height
    elif settings.wallet.birthday_height is not None:
        resolved_birthday = settings.wallet.birthday_height
    else:
        resolved_birthday = default_birthday(resolved_network)

    resolved_batch_size = batch_size if batch_size is not None else settings.wallet.batch_size
    if resolved_batch_size < 1:
        raise ValueError(f"Batch size must be positive, got {resolved_batch_size}")

    resolved_data_dir = data_dir if data_dir is not None else settings.get_data_dir()

    if mirror_url is not None:
        resolved_mirror_url: str | None = mirror_url
    elif settings.mirror.enabled:
        resolved_mirror_url = settings.get_mirror_url()
    else:
        resolved_mirror_url = None

    return ResolvedSyncSettings(
        network=resolved_network,
        lightwalletd_url=resolved_url,
        connect_timeout=settings.lightwalletd.connect_timeout,
        read_timeout=settings.lightwalletd.read_timeout,
        birthday_height=resolved_birthday,
        batch_size=resolved_batch_size,
        scan_retry_attempts=settings.wallet.scan_retry_attempts,
        scan_retry_base_delay=settings.wallet.scan_retry_base_delay,
        worker_threads=settings.wallet.worker_threads,
        data_dir=resolved_data_dir,
        mirror_url=resolved_mirror_url,
    )


def resolve_mnemonic(
    *,
    mnemonic: str | None = None,
    mnemonic_file: Path | None = None,
) -> ResolvedMnemonic | None:
    """
    Resolve the wallet mnemonic.

    Priority: --mnemonic > --mnemonic-file > SHIELD_MNEMONIC env var.

    Raises:
        FileNotFoundError: If the mnemonic file doesn't exist
        ValueError: If the mnemonic file is empty
    """
    if mnemonic:
        return ResolvedMnemonic(mnemonic=" ".join(mnemonic.split()), source="argument")

    if mnemonic_file is not None:
        if not mnemonic_file.exists():
            raise FileNotFoundError(f"Mnemonic file not found: {mnemonic_file}")
        words = mnemonic_file.read_text().split()
        if not words:
            raise ValueError(f"Mnemonic file is empty: {mnemonic_file}")
        return ResolvedMnemonic(mnemonic=" ".join(words), source=str(mnemonic_file))

    env_mnemonic = os.environ.get("SHIELD_MNEMONIC")
    if env_mnemonic:
        return ResolvedMnemonic(
            mnemonic=" ".join(env_mnemonic.split()), source="SHIELD_MNEMONIC"
        )

    return None


def log_resolved_settings(
    resolved: ResolvedSyncSettings, mnemonic_source: str | None = None
) -> None:
    """Log resolved settings for debugging/transparency."""
    logger.info(f"Network: {resolved.network.value}")
    logger.info(f"lightwalletd: {resolved.lightwalletd_url}")
    logger.info(f"Birthday height: {resolved.birthday_height}")
    logger.debug(f"Batch size: {resolved.batch_size}")
    if resolved.mirror_url is None:
        logger.info("Relational mirror: disabled")
    if mnemonic_source:
        logger.info(f"Mnemonic loaded from: {mnemonic_source}")
