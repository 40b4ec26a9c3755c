"""
Hierarchical key derivation for shielded accounts.

Account keys live at m/32'/coin_type'/account' (hardened only). From the
account's spending key every pool derives its own key set:

- ask: spend authorization key (Ed25519), signs spends
- nk: nullifier deriving key
- ivk: incoming viewing key (X25519), detects received notes
- ovk: outgoing viewing key
- d: default diversifier of the account's payment address
"""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass, field

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey
from mnemonic import Mnemonic
from shieldcore.models import NetworkType, ShieldedPool, get_network_params

HARDENED = 0x80000000
PURPOSE = 32
DIVERSIFIER_LENGTH = 11

_RAW = serialization.Encoding.Raw
_RAW_PUBLIC = serialization.PublicFormat.Raw
_RAW_PRIVATE = serialization.PrivateFormat.Raw


def prf_expand(key: bytes, domain: bytes) -> bytes:
    """64-byte pseudo-random expansion of a key for one domain."""
    return hashlib.blake2b(key + domain, digest_size=64, person=b"Zcash_ExpandSeed").digest()


class ExtendedSpendingKey:
    """
    Hierarchical deterministic spending key.

    Only hardened derivation exists for shielded keys, so every path
    component must carry a ' or h suffix.
    """

    def __init__(self, key: bytes, chain_code: bytes, depth: int = 0):
        if len(key) != 32 or len(chain_code) != 32:
            raise ValueError("Spending key and chain code must be 32 bytes")
        self.key = key
        self.chain_code = chain_code
        self.depth = depth

    @classmethod
    def from_seed(cls, seed: bytes) -> ExtendedSpendingKey:
        """Create master key from seed"""
        if len(seed) < 32:
            raise ValueError("Seed must be at least 32 bytes")
        digest = hmac.new(b"ZcashIP32Sapling", seed, hashlib.sha512).digest()
        return cls(digest[:32], digest[32:], depth=0)

    def derive(self, path: str) -> ExtendedSpendingKey:
        """
        Derive child key from path notation (e.g., "m/32'/133'/0'")
        """
        if not path.startswith("m"):
            raise ValueError("Path must start with 'm'")

        key = self
        for part in path.split("/")[1:]:
            if not part:
                continue
            if not (part.endswith("'") or part.endswith("h")):
                raise ValueError(f"Non-hardened derivation is not supported: {part}")
            index = int(part.rstrip("'h"))
            key = key._derive_child(index + HARDENED)

        return key

    def _derive_child(self, index: int) -> ExtendedSpendingKey:
        data = b"\x11" + self.key + index.to_bytes(4, "little")
        digest = hmac.new(self.chain_code, data, hashlib.sha512).digest()
        child_key = prf_expand(self.key, b"\x13" + digest[:32])[:32]
        return ExtendedSpendingKey(child_key, digest[32:], depth=self.depth + 1)


@dataclass(frozen=True)
class PoolViewingKey:
    """Viewing capability of one account in one pool."""

    pool: ShieldedPool
    ak: bytes
    nk: bytes
    ovk: bytes
    ivk: bytes
    diversifier: bytes

    def incoming_key(self) -> X25519PrivateKey:
        return X25519PrivateKey.from_private_bytes(self.ivk)

    @property
    def pk_d(self) -> bytes:
        """Transmission key of the default address."""
        return self.incoming_key().public_key().public_bytes(_RAW, _RAW_PUBLIC)

    def nullifier(self, cmu: bytes, position: int) -> bytes:
        """Nullifier of the note with commitment ``cmu`` at tree position ``position``."""
        return hashlib.blake2b(
            self.nk + cmu + position.to_bytes(8, "little"),
            digest_size=32,
            person=b"Zcash_nf" + bytes([self.pool.tag]) * 8,
        ).digest()

    def encode(self) -> bytes:
        return bytes([self.pool.tag]) + self.ak + self.nk + self.ovk + self.ivk + self.diversifier


@dataclass(frozen=True)
class FullViewingKey:
    """Viewing keys of an account across both pools."""

    pools: dict[ShieldedPool, PoolViewingKey] = field(hash=False)

    def __getitem__(self, pool: ShieldedPool) -> PoolViewingKey:
        return self.pools[pool]

    def encode(self) -> str:
        """Stable hex encoding, stored alongside the account."""
        return b"".join(self.pools[p].encode() for p in ShieldedPool).hex()

    @property
    def fingerprint(self) -> str:
        return hashlib.blake2b(bytes.fromhex(self.encode()), digest_size=16).hexdigest()

    @classmethod
    def decode(cls, encoded: str) -> FullViewingKey:
        raw = bytes.fromhex(encoded)
        size = 1 + 32 * 4 + DIVERSIFIER_LENGTH
        if len(raw) != size * len(ShieldedPool):
            raise ValueError("Invalid viewing key length")
        pools: dict[ShieldedPool, PoolViewingKey] = {}
        for offset in range(0, len(raw), size):
            chunk = raw[offset : offset + size]
            pool = ShieldedPool.from_tag(chunk[0])
            pools[pool] = PoolViewingKey(
                pool=pool,
                ak=chunk[1:33],
                nk=chunk[33:65],
                ovk=chunk[65:97],
                ivk=chunk[97:129],
                diversifier=chunk[129:],
            )
        return cls(pools=pools)


class PoolSpendingKey:
    """Spending capability of one account in one pool."""

    def __init__(self, pool: ShieldedPool, sk: bytes):
        self.pool = pool
        self.sk = sk
        self._expanded = {
            tag: prf_expand(sk, bytes([tag, pool.tag]))[:32] for tag in (0, 1, 2, 3, 4)
        }

    def authorizing_key(self) -> Ed25519PrivateKey:
        return Ed25519PrivateKey.from_private_bytes(self._expanded[0])

    def viewing_key(self) -> PoolViewingKey:
        ak = self.authorizing_key().public_key().public_bytes(_RAW, _RAW_PUBLIC)
        ivk = X25519PrivateKey.from_private_bytes(self._expanded[2])
        return PoolViewingKey(
            pool=self.pool,
            ak=ak,
            nk=self._expanded[1],
            ovk=self._expanded[3],
            ivk=ivk.private_bytes(_RAW, _RAW_PRIVATE, serialization.NoEncryption()),
            diversifier=self._expanded[4][:DIVERSIFIER_LENGTH],
        )


class AccountKeys:
    """All key material of the single account a user owns."""

    def __init__(self, account_key: ExtendedSpendingKey, network: NetworkType):
        self.network = network
        self.spending_keys = {
            pool: PoolSpendingKey(pool, prf_expand(account_key.key, bytes([0x20, pool.tag]))[:32])
            for pool in ShieldedPool
        }
        self.viewing_key = FullViewingKey(
            pools={pool: sk.viewing_key() for pool, sk in self.spending_keys.items()}
        )

    @classmethod
    def from_seed(
        cls, seed: bytes, network: NetworkType | str, account_index: int = 0
    ) -> AccountKeys:
        network = NetworkType(network)
        coin_type = get_network_params(network).coin_type
        master = ExtendedSpendingKey.from_seed(seed)
        account_key = master.derive(f"m/{PURPOSE}'/{coin_type}'/{account_index}'")
        return cls(account_key, network)

    @classmethod
    def from_mnemonic(
        cls, mnemonic: str, network: NetworkType | str, passphrase: str = ""
    ) -> AccountKeys:
        return cls.from_seed(mnemonic_to_seed(mnemonic, passphrase), network)

    def address(self, pool: ShieldedPool = ShieldedPool.ORCHARD) -> str:
        """Default payment address of the account in ``pool``."""
        from shieldwallet.wallet.address import encode_address

        vk = self.viewing_key[pool]
        return encode_address(self.network, pool, vk.diversifier, vk.pk_d)


def mnemonic_to_seed(mnemonic: str, passphrase: str = "") -> bytes:
    """
    Convert a BIP39 mnemonic to its 64-byte seed.

    Raises:
        ValueError: If the mnemonic checksum is invalid
    """
    normalized = " ".join(mnemonic.split())
    if not Mnemonic("english").check(normalized):
        raise ValueError("Invalid BIP39 mnemonic")
    return Mnemonic.to_seed(normalized, passphrase)
