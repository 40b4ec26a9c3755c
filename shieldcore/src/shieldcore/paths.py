"""
Shared path utilities for Shield Wallet data directories.

Every user gets exactly one embedded wallet database inside the data
directory. The file is only ever opened by the holder of that user's
scan lock.
"""

from __future__ import annotations

import os
import re
from pathlib import Path

_USER_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


def get_default_data_dir() -> Path:
    """
    Get the default Shield Wallet data directory.

    Returns ~/.shield-wallet or $SHIELD_DATA_DIR if set.
    Creates the directory if it doesn't exist.
    """
    env_path = os.getenv("SHIELD_DATA_DIR")
    data_dir = Path(env_path) if env_path else Path.home() / ".shield-wallet"

    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir


def get_wallet_db_path(user_id: str, data_dir: Path | None = None) -> Path:
    """
    Get the path of a user's embedded wallet database.

    Args:
        user_id: Owning user identifier (used verbatim in the file name)
        data_dir: Optional data directory (defaults to get_default_data_dir())

    Returns:
        Path to wallet_data/wallet_<user_id>.db

    Raises:
        ValueError: If the user id cannot be used safely as a file name
    """
    if not _USER_ID_PATTERN.match(user_id):
        raise ValueError(f"Invalid user id for wallet path: {user_id!r}")

    if data_dir is None:
        data_dir = get_default_data_dir()

    wallet_dir = data_dir / "wallet_data"
    wallet_dir.mkdir(parents=True, exist_ok=True)

    return wallet_dir / f"wallet_{user_id}.db"


def get_mirror_db_path(data_dir: Path | None = None) -> Path:
    """Get the path of the default SQLite relational mirror."""
    if data_dir is None:
        data_dir = get_default_data_dir()
    return data_dir / "mirror.db"
