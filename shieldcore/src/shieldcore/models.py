"""
Core network and pool models shared by all components.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

ZATOSHIS_PER_COIN = 100_000_000


class NetworkType(str, Enum):
    MAINNET = "main"
    TESTNET = "test"


class ShieldedPool(str, Enum):
    """The two shielded pool generations, oldest first."""

    SAPLING = "sapling"
    ORCHARD = "orchard"

    @property
    def tag(self) -> int:
        """Single-byte identifier used in serialized transactions."""
        return 0 if self is ShieldedPool.SAPLING else 1

    @classmethod
    def from_tag(cls, tag: int) -> ShieldedPool:
        if tag == 0:
            return cls.SAPLING
        if tag == 1:
            return cls.ORCHARD
        raise ValueError(f"Unknown pool tag: {tag}")


# Change that cannot go back to the pool it was funded from lands here
FALLBACK_POOL = ShieldedPool.ORCHARD


class NetworkParams(BaseModel):
    """Consensus and presentation constants for one network."""

    network: NetworkType
    coin_type: int = Field(..., ge=0)
    sapling_activation_height: int = Field(..., ge=0)
    address_prefixes: dict[ShieldedPool, str]
    explorer_url: str

    def address_prefix(self, pool: ShieldedPool) -> str:
        return self.address_prefixes[pool]

    def explorer_tx_url(self, txid: str) -> str:
        return f"{self.explorer_url}/transactions/{txid}"


MAINNET_PARAMS = NetworkParams(
    network=NetworkType.MAINNET,
    coin_type=133,
    sapling_activation_height=419_200,
    address_prefixes={ShieldedPool.SAPLING: "zs", ShieldedPool.ORCHARD: "zo"},
    explorer_url="https://mainnet.zcashexplorer.app",
)

TESTNET_PARAMS = NetworkParams(
    network=NetworkType.TESTNET,
    coin_type=1,
    sapling_activation_height=280_000,
    address_prefixes={
        ShieldedPool.SAPLING: "ztestsapling",
        ShieldedPool.ORCHARD: "ztestorchard",
    },
    explorer_url="https://testnet.zcashexplorer.app",
)


def get_network_params(network: NetworkType | str) -> NetworkParams:
    """Look up the parameters of a network by enum or name."""
    network = NetworkType(network)
    if network is NetworkType.MAINNET:
        return MAINNET_PARAMS
    return TESTNET_PARAMS


def default_birthday(network: NetworkType | str) -> int:
    """Earliest height at which shielded notes for a new account can exist."""
    return get_network_params(network).sapling_activation_height


def zatoshis_to_coins(value: int) -> str:
    """Format a zatoshi amount with eight decimals (e.g. 25000 -> '0.00025000')."""
    sign = "-" if value < 0 else ""
    whole, frac = divmod(abs(value), ZATOSHIS_PER_COIN)
    return f"{sign}{whole}.{frac:08d}"
