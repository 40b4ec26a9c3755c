"""
Shielded transaction serialization.

Layout (little endian):

    magic "SHTX" | version u16 | expiry_height u32 | fee u64
    spend count u16  | spends   (pool u8, nf 32, anchor 32, rk 32, proof, sig)
    output count u16 | outputs  (pool u8, cmu 32, epk 32, ciphertext, memo, proof)

Variable-length fields carry a u32 length prefix. The txid is the BLAKE2b
digest of everything except the spend authorization signatures, which is
also the message those signatures sign.
"""

from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass, field

from shieldcore.models import ShieldedPool

MAGIC = b"SHTX"
TX_VERSION = 1


@dataclass
class SpendDescription:
    pool: ShieldedPool
    nullifier: bytes
    anchor: bytes
    rk: bytes
    proof: bytes
    spend_auth_sig: bytes = b""


@dataclass
class OutputDescription:
    pool: ShieldedPool
    cmu: bytes
    epk: bytes
    ciphertext: bytes
    memo_ciphertext: bytes
    proof: bytes


@dataclass
class ShieldedTransaction:
    expiry_height: int
    fee: int
    spends: list[SpendDescription] = field(default_factory=list)
    outputs: list[OutputDescription] = field(default_factory=list)
    version: int = TX_VERSION

    def _serialize(self, with_signatures: bool) -> bytes:
        parts = [MAGIC, struct.pack("<HIQ", self.version, self.expiry_height, self.fee)]
        parts.append(struct.pack("<H", len(self.spends)))
        for spend in self.spends:
            parts.append(bytes([spend.pool.tag]) + spend.nullifier + spend.anchor + spend.rk)
            parts.append(_var(spend.proof))
            if with_signatures:
                parts.append(_var(spend.spend_auth_sig))
        parts.append(struct.pack("<H", len(self.outputs)))
        for output in self.outputs:
            parts.append(bytes([output.pool.tag]) + output.cmu + output.epk)
            parts.append(_var(output.ciphertext))
            parts.append(_var(output.memo_ciphertext))
            parts.append(_var(output.proof))
        return b"".join(parts)

    def sighash(self) -> bytes:
        return hashlib.blake2b(
            self._serialize(with_signatures=False), digest_size=32, person=b"ShieldTxHash_v1_"
        ).digest()

    @property
    def txid(self) -> str:
        return self.sighash()[::-1].hex()

    def to_bytes(self) -> bytes:
        return self._serialize(with_signatures=True)

    @classmethod
    def from_bytes(cls, data: bytes) -> ShieldedTransaction:
        reader = _Reader(data)
        if reader.take(4) != MAGIC:
            raise ValueError("Not a shielded transaction")
        version, expiry_height, fee = struct.unpack("<HIQ", reader.take(14))
        if version != TX_VERSION:
            raise ValueError(f"Unsupported transaction version {version}")

        tx = cls(expiry_height=expiry_height, fee=fee, version=version)
        for _ in range(struct.unpack("<H", reader.take(2))[0]):
            pool = ShieldedPool.from_tag(reader.take(1)[0])
            tx.spends.append(
                SpendDescription(
                    pool=pool,
                    nullifier=reader.take(32),
                    anchor=reader.take(32),
                    rk=reader.take(32),
                    proof=reader.var(),
                    spend_auth_sig=reader.var(),
                )
            )
        for _ in range(struct.unpack("<H", reader.take(2))[0]):
            pool = ShieldedPool.from_tag(reader.take(1)[0])
            tx.outputs.append(
                OutputDescription(
                    pool=pool,
                    cmu=reader.take(32),
                    epk=reader.take(32),
                    ciphertext=reader.var(),
                    memo_ciphertext=reader.var(),
                    proof=reader.var(),
                )
            )
        if not reader.done:
            raise ValueError("Trailing bytes after transaction")
        return tx


def _var(value: bytes) -> bytes:
    return struct.pack("<I", len(value)) + value


class _Reader:
    def __init__(self, data: bytes):
        self.data = data
        self.offset = 0

    @property
    def done(self) -> bool:
        return self.offset == len(self.data)

    def take(self, size: int) -> bytes:
        if self.offset + size > len(self.data):
            raise ValueError("Truncated transaction")
        chunk = self.data[self.offset : self.offset + size]
        self.offset += size
        return chunk

    def var(self) -> bytes:
        (size,) = struct.unpack("<I", self.take(4))
        return self.take(size)
