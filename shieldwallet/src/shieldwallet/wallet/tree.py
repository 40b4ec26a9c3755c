"""
Incremental note commitment tree frontier.

Only the rightmost path of the depth-32 Merkle tree is kept: for every level
whose bit is set in the current size, the completed left subtree waiting for
its right sibling. That is enough to append further commitments and to
compute the root, which is all scanning needs.
"""

from __future__ import annotations

import hashlib

TREE_DEPTH = 32
_PERSONALIZATION = b"ShieldMerkleHash"


def combine(level: int, left: bytes, right: bytes) -> bytes:
    return hashlib.blake2b(
        bytes([level]) + left + right, digest_size=32, person=_PERSONALIZATION
    ).digest()


def _empty_roots() -> list[bytes]:
    roots = [b"\x01" + bytes(31)]
    for level in range(TREE_DEPTH):
        roots.append(combine(level, roots[level], roots[level]))
    return roots


EMPTY_ROOTS = _empty_roots()


class Frontier:
    """Rightmost path of an append-only commitment tree."""

    def __init__(self, size: int = 0, ommers: dict[int, bytes] | None = None):
        if size < 0 or size > 2**TREE_DEPTH:
            raise ValueError(f"Invalid tree size: {size}")
        self.size = size
        self._ommers: dict[int, bytes] = dict(ommers or {})
        for level in range(TREE_DEPTH):
            if (size >> level) & 1 and level not in self._ommers:
                raise ValueError(f"Missing subtree root at level {level} for size {size}")

    def copy(self) -> Frontier:
        return Frontier(self.size, self._ommers)

    def append(self, commitment: bytes) -> int:
        """Append a leaf and return its position."""
        if len(commitment) != 32:
            raise ValueError("Commitments must be 32 bytes")
        if self.size >= 2**TREE_DEPTH:
            raise ValueError("Commitment tree is full")

        position = self.size
        index = position
        node = commitment
        for level in range(TREE_DEPTH):
            if index & 1 == 0:
                self._ommers[level] = node
                break
            node = combine(level, self._ommers[level], node)
            index >>= 1

        self.size += 1
        return position

    def root(self) -> bytes:
        node = EMPTY_ROOTS[0]
        index = self.size
        for level in range(TREE_DEPTH):
            if index & 1:
                node = combine(level, self._ommers[level], node)
            else:
                node = combine(level, node, EMPTY_ROOTS[level])
            index >>= 1
        return node

    def to_bytes(self) -> bytes:
        parts = [self.size.to_bytes(8, "little")]
        for level in range(TREE_DEPTH):
            if (self.size >> level) & 1:
                parts.append(self._ommers[level])
        return b"".join(parts)

    @classmethod
    def from_bytes(cls, data: bytes) -> Frontier:
        if len(data) < 8:
            raise ValueError("Serialized frontier too short")
        size = int.from_bytes(data[:8], "little")
        levels = [level for level in range(TREE_DEPTH) if (size >> level) & 1]
        if len(data) != 8 + 32 * len(levels):
            raise ValueError(f"Serialized frontier length mismatch for size {size}")
        ommers = {
            level: data[8 + 32 * i : 8 + 32 * (i + 1)] for i, level in enumerate(levels)
        }
        return cls(size, ommers)

    @classmethod
    def from_hex(cls, value: str) -> Frontier:
        if not value:
            return cls()
        return cls.from_bytes(bytes.fromhex(value))

    def to_hex(self) -> str:
        return self.to_bytes().hex()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Frontier):
            return NotImplemented
        return self.to_bytes() == other.to_bytes()

    def __repr__(self) -> str:
        return f"Frontier(size={self.size}, root={self.root().hex()[:16]}...)"
