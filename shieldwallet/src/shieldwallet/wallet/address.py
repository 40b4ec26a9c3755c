"""
Shielded payment address encoding.

An address is bech32(prefix, diversifier || pk_d). The prefix identifies both
the network and the pool, so a decoded address always tells where the funds
go and whether they belong on this network at all.
"""

from __future__ import annotations

from dataclasses import dataclass

import bech32 as bech32_lib
from shieldcore.models import NetworkType, ShieldedPool, get_network_params

from shieldwallet.errors import AddressNetworkMismatchError, InvalidAddressError
from shieldwallet.wallet.keys import DIVERSIFIER_LENGTH

PAYLOAD_LENGTH = DIVERSIFIER_LENGTH + 32


@dataclass(frozen=True)
class PaymentAddress:
    network: NetworkType
    pool: ShieldedPool
    diversifier: bytes
    pk_d: bytes

    def encode(self) -> str:
        return encode_address(self.network, self.pool, self.diversifier, self.pk_d)


def _prefix_table() -> dict[str, tuple[NetworkType, ShieldedPool]]:
    table: dict[str, tuple[NetworkType, ShieldedPool]] = {}
    for network in NetworkType:
        params = get_network_params(network)
        for pool in ShieldedPool:
            table[params.address_prefix(pool)] = (network, pool)
    return table


def encode_address(
    network: NetworkType, pool: ShieldedPool, diversifier: bytes, pk_d: bytes
) -> str:
    payload = diversifier + pk_d
    if len(payload) != PAYLOAD_LENGTH:
        raise ValueError(f"Address payload must be {PAYLOAD_LENGTH} bytes")
    hrp = get_network_params(network).address_prefix(pool)
    data = bech32_lib.convertbits(payload, 8, 5)
    if data is None:
        raise ValueError("Failed to convert address payload")
    return bech32_lib.bech32_encode(hrp, data)


def decode_address(address: str) -> PaymentAddress:
    """
    Decode an address without checking its network.

    Raises:
        InvalidAddressError: If the string is not a shielded address
    """
    hrp, data = bech32_lib.bech32_decode(address.strip())
    if hrp is None or data is None:
        raise InvalidAddressError(f"Invalid shielded address: {address}")

    known = _prefix_table()
    if hrp not in known:
        raise InvalidAddressError(f"Unknown address prefix '{hrp}'")

    payload = bech32_lib.convertbits(data, 5, 8, False)
    if payload is None or len(payload) != PAYLOAD_LENGTH:
        raise InvalidAddressError(f"Invalid address payload length in {address}")

    network, pool = known[hrp]
    raw = bytes(payload)
    return PaymentAddress(
        network=network,
        pool=pool,
        diversifier=raw[:DIVERSIFIER_LENGTH],
        pk_d=raw[DIVERSIFIER_LENGTH:],
    )


def parse_address_for_network(address: str, network: NetworkType) -> PaymentAddress:
    """
    Decode an address and make sure it belongs to ``network``.

    Raises:
        InvalidAddressError: If the string is not a shielded address
        AddressNetworkMismatchError: If the address is for another network
    """
    decoded = decode_address(address)
    if decoded.network is not network:
        raise AddressNetworkMismatchError(
            f"Address is for {decoded.network.value}, wallet is on {network.value}"
        )
    return decoded
