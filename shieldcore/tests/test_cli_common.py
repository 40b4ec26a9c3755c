"""
Tests for the CLI common module.
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest
from loguru import logger

from shieldcore.cli_common import (
    resolve_mnemonic,
    resolve_sync_settings,
    setup_cli,
    setup_logging,
)
from shieldcore.models import NetworkType
from shieldcore.settings import DEFAULT_LIGHTWALLETD_URLS, ShieldSettings


class TestSetupLogging:
    """Tests for setup_logging function."""

    def test_setup_logging_case_insensitive(self) -> None:
        setup_logging("trace")
        setup_logging("TRACE")
        setup_logging("Trace")


class TestSetupCli:
    """Tests for setup_cli function."""

    def test_setup_cli_returns_settings(self) -> None:
        assert isinstance(setup_cli(), ShieldSettings)

    def test_cli_arg_overrides_settings(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LOGGING__LEVEL", "DEBUG")

        with patch.object(logger, "remove"), patch.object(logger, "add") as mock_add:
            setup_cli(log_level="TRACE")

        mock_add.assert_called_once()
        assert mock_add.call_args[1]["level"] == "TRACE"

    def test_uses_settings_when_no_cli_arg(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LOGGING__LEVEL", "WARNING")

        with patch.object(logger, "remove"), patch.object(logger, "add") as mock_add:
            setup_cli(log_level=None)

        assert mock_add.call_args[1]["level"] == "WARNING"


class TestResolveSyncSettings:
    """Tests for resolve_sync_settings."""

    def test_defaults(self, isolated_environment: Path) -> None:
        resolved = resolve_sync_settings(ShieldSettings())

        assert resolved.network == NetworkType.MAINNET
        assert resolved.lightwalletd_url == DEFAULT_LIGHTWALLETD_URLS["main"]
        assert resolved.birthday_height == 419_200
        assert resolved.batch_size == 50_000
        assert resolved.data_dir == isolated_environment
        assert resolved.mirror_url is not None
        assert resolved.mirror_url.startswith("sqlite+aiosqlite:///")

    def test_testnet_switches_endpoint_and_birthday(self) -> None:
        resolved = resolve_sync_settings(ShieldSettings(), network="test")

        assert resolved.network == NetworkType.TESTNET
        assert resolved.lightwalletd_url == DEFAULT_LIGHTWALLETD_URLS["test"]
        assert resolved.birthday_height == 280_000

    def test_cli_values_win(self, tmp_path: Path) -> None:
        settings = ShieldSettings(wallet={"batch_size": 10, "birthday_height": 500_000})
        resolved = resolve_sync_settings(
            settings,
            lightwalletd_url="http://localhost:9067",
            birthday_height=600_000,
            batch_size=25,
            data_dir=tmp_path,
            mirror_url="sqlite+aiosqlite:///:memory:",
        )

        assert resolved.lightwalletd_url == "http://localhost:9067"
        assert resolved.birthday_height == 600_000
        assert resolved.batch_size == 25
        assert resolved.data_dir == tmp_path
        assert resolved.mirror_url == "sqlite+aiosqlite:///:memory:"

    def test_configured_birthday_used(self) -> None:
        settings = ShieldSettings(wallet={"birthday_height": 2_000_000})
        assert resolve_sync_settings(settings).birthday_height == 2_000_000

    def test_mirror_disabled(self) -> None:
        settings = ShieldSettings(mirror={"enabled": False})
        assert resolve_sync_settings(settings).mirror_url is None

    def test_invalid_batch_size(self) -> None:
        with pytest.raises(ValueError, match="Batch size must be positive"):
            resolve_sync_settings(ShieldSettings(), batch_size=0)

    def test_invalid_network(self) -> None:
        with pytest.raises(ValueError):
            resolve_sync_settings(ShieldSettings(), network="regtest")


class TestResolveMnemonic:
    """Tests for resolve_mnemonic."""

    def test_argument_normalized(self) -> None:
        resolved = resolve_mnemonic(mnemonic="  word1   word2\nword3 ")
        assert resolved is not None
        assert resolved.mnemonic == "word1 word2 word3"
        assert resolved.source == "argument"

    def test_file(self, tmp_path: Path) -> None:
        path = tmp_path / "mnemonic.txt"
        path.write_text("alpha beta\ngamma\n")

        resolved = resolve_mnemonic(mnemonic_file=path)

        assert resolved is not None
        assert resolved.mnemonic == "alpha beta gamma"
        assert resolved.source == str(path)

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            resolve_mnemonic(mnemonic_file=tmp_path / "missing.txt")

    def test_empty_file(self, tmp_path: Path) -> None:
        path = tmp_path / "empty.txt"
        path.write_text("\n")
        with pytest.raises(ValueError, match="empty"):
            resolve_mnemonic(mnemonic_file=path)

    def test_env_var(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SHIELD_MNEMONIC", "one two three")
        resolved = resolve_mnemonic()
        assert resolved is not None
        assert resolved.source == "SHIELD_MNEMONIC"

    def test_nothing_configured(self) -> None:
        assert resolve_mnemonic() is None
