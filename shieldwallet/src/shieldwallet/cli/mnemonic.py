"""
Mnemonic helpers shared by the wallet commands.
"""

from __future__ import annotations

import os
from pathlib import Path

import typer
from loguru import logger
from mnemonic import Mnemonic
from shieldcore.cli_common import resolve_mnemonic

from shieldwallet.wallet.service import WalletCredentials

DEFAULT_USER_ID = "default"

_STRENGTH_BY_WORDS = {12: 128, 15: 160, 18: 192, 21: 224, 24: 256}


def generate_mnemonic_secure(word_count: int = 24) -> str:
    """
    Generate a BIP39 mnemonic from secure entropy.

    Args:
        word_count: Number of words (12, 15, 18, 21, or 24)
    """
    if word_count not in _STRENGTH_BY_WORDS:
        raise ValueError("word_count must be 12, 15, 18, 21, or 24")
    return Mnemonic("english").generate(strength=_STRENGTH_BY_WORDS[word_count])


def validate_mnemonic(mnemonic: str) -> bool:
    return Mnemonic("english").check(" ".join(mnemonic.split()))


def save_mnemonic_file(mnemonic: str, output_file: Path) -> None:
    """Write the mnemonic readable by the owner only."""
    output_file.parent.mkdir(parents=True, exist_ok=True)
    output_file.write_text(mnemonic + "\n")
    os.chmod(output_file, 0o600)


def load_credentials(
    user_id: str,
    mnemonic: str | None,
    mnemonic_file: Path | None,
    birthday_height: int | None = None,
) -> WalletCredentials:
    """Resolve wallet credentials for a command or exit with status 1."""
    try:
        resolved = resolve_mnemonic(mnemonic=mnemonic, mnemonic_file=mnemonic_file)
        if resolved is None:
            raise ValueError(
                "No mnemonic provided (use --mnemonic, --mnemonic-file or SHIELD_MNEMONIC)"
            )
    except (FileNotFoundError, ValueError) as e:
        logger.error(str(e))
        raise typer.Exit(1)

    if not validate_mnemonic(resolved.mnemonic):
        logger.error(f"Invalid BIP39 mnemonic from {resolved.source}")
        raise typer.Exit(1)

    logger.debug(f"Using mnemonic from {resolved.source}")
    return WalletCredentials(
        user_id=user_id, mnemonic=resolved.mnemonic, birthday_height=birthday_height
    )
