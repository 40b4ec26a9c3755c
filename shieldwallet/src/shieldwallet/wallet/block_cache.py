"""
Block sources for the scan algorithm.

The scanner only needs ordered iteration over downloaded compact blocks, so
any backing store that can answer ``blocks_from`` can feed it.
"""

from __future__ import annotations

from collections.abc import Iterator
from typing import Protocol, runtime_checkable

from shieldwallet.chain.models import CompactBlock


@runtime_checkable
class BlockSource(Protocol):
    def blocks_from(self, height: int, limit: int | None = None) -> Iterator[CompactBlock]:
        """Blocks at ``height`` and above in ascending order, at most ``limit`` of them."""
        ...


class InMemoryBlockCache:
    """
    Holds one contiguous run of downloaded blocks.

    Blocks must be inserted in height order without gaps so iteration never
    has to sort or skip.
    """

    def __init__(self) -> None:
        self._blocks: list[CompactBlock] = []

    def __len__(self) -> int:
        return len(self._blocks)

    @property
    def start_height(self) -> int | None:
        return self._blocks[0].height if self._blocks else None

    @property
    def end_height(self) -> int | None:
        return self._blocks[-1].height if self._blocks else None

    def insert(self, block: CompactBlock) -> None:
        if self._blocks and block.height != self._blocks[-1].height + 1:
            raise ValueError(
                f"Block {block.height} does not follow cached block {self._blocks[-1].height}"
            )
        self._blocks.append(block)

    def blocks_from(self, height: int, limit: int | None = None) -> Iterator[CompactBlock]:
        if not self._blocks:
            return
        offset = max(0, height - self._blocks[0].height)
        end = len(self._blocks) if limit is None else min(len(self._blocks), offset + limit)
        yield from self._blocks[offset:end]

    def clear(self) -> None:
        self._blocks.clear()
