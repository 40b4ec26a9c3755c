"""
Shared fixtures for shieldcore tests.
"""

from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest

from shieldcore.settings import reset_settings

_ENV_VARS = (
    "SHIELD_DATA_DIR",
    "SHIELD_CONFIG_FILE",
    "SHIELD_MNEMONIC",
    "NETWORK_CONFIG__NETWORK",
    "WALLET__BATCH_SIZE",
    "WALLET__BIRTHDAY_HEIGHT",
    "MIRROR__ENABLED",
    "MIRROR__DATABASE_URL",
    "LOGGING__LEVEL",
)


@pytest.fixture(autouse=True)
def isolated_environment(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> Generator[Path, None, None]:
    """Point the data directory at tmp_path and drop any inherited overrides."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    data_dir = tmp_path / ".shield-wallet"
    monkeypatch.setenv("SHIELD_DATA_DIR", str(data_dir))
    reset_settings()
    yield data_dir
    reset_settings()
