"""
Proving capability consumed by the transaction builder.

The builder only needs "prove this spend" and "prove this output". Proving
systems plug in behind SpendProver; LocalProver produces transparent binding
digests over the same inputs and is what the wallet runs with when no
external proving backend is configured.
"""

from __future__ import annotations

import hashlib
from abc import ABC, abstractmethod

from shieldcore.models import ShieldedPool


class SpendProver(ABC):
    @abstractmethod
    def prove_spend(
        self,
        pool: ShieldedPool,
        nullifier: bytes,
        anchor: bytes,
        rk: bytes,
        commitment: bytes,
        value: int,
        rseed: bytes,
    ) -> bytes:
        """Proof that ``commitment`` sits under ``anchor`` and has nullifier ``nullifier``."""

    @abstractmethod
    def prove_output(self, pool: ShieldedPool, cmu: bytes, epk: bytes, value: int) -> bytes:
        """Proof that ``cmu`` commits to a well-formed note of ``value``."""


class LocalProver(SpendProver):
    SPEND_PROOF_SIZE = 192
    OUTPUT_PROOF_SIZE = 192

    @staticmethod
    def _digest(label: bytes, *parts: bytes, size: int) -> bytes:
        out = b""
        counter = 0
        while len(out) < size:
            h = hashlib.blake2b(digest_size=64, person=label + counter.to_bytes(4, "little"))
            for part in parts:
                h.update(len(part).to_bytes(4, "little"))
                h.update(part)
            out += h.digest()
            counter += 1
        return out[:size]

    def prove_spend(
        self,
        pool: ShieldedPool,
        nullifier: bytes,
        anchor: bytes,
        rk: bytes,
        commitment: bytes,
        value: int,
        rseed: bytes,
    ) -> bytes:
        for name, item in (("nullifier", nullifier), ("anchor", anchor), ("rk", rk)):
            if len(item) != 32:
                raise ValueError(f"Spend {name} must be 32 bytes")
        if value < 0:
            raise ValueError(f"Negative note value: {value}")
        return self._digest(
            b"ShieldSpendP",
            bytes([pool.tag]),
            nullifier,
            anchor,
            rk,
            commitment,
            value.to_bytes(8, "little"),
            rseed,
            size=self.SPEND_PROOF_SIZE,
        )

    def prove_output(self, pool: ShieldedPool, cmu: bytes, epk: bytes, value: int) -> bytes:
        if len(cmu) != 32 or len(epk) != 32:
            raise ValueError("Output commitment and ephemeral key must be 32 bytes")
        if value < 0:
            raise ValueError(f"Negative output value: {value}")
        return self._digest(
            b"ShieldOutptP",
            bytes([pool.tag]),
            cmu,
            epk,
            value.to_bytes(8, "little"),
            size=self.OUTPUT_PROOF_SIZE,
        )
