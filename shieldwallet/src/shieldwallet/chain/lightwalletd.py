"""
lightwalletd JSON gateway client.

Talks to the HTTP/JSON gateway in front of a lightwalletd instance. Compact
block ranges are streamed as newline-delimited JSON so a batch never has to
be buffered as one response body.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

import httpx
from loguru import logger
from pydantic import ValidationError

from shieldwallet.chain.base import ChainService
from shieldwallet.chain.models import BroadcastResult, CompactBlock, TreeState
from shieldwallet.errors import ChainServiceError, TreeStateUnavailableError


class LightwalletdClient(ChainService):
    """
    Chain service backed by a lightwalletd gateway.

    Connection setup and data transfer have separate timeouts: establishing a
    connection should fail fast, while streaming a full scan batch can take
    minutes.
    """

    def __init__(
        self,
        base_url: str,
        connect_timeout: float = 30.0,
        read_timeout: float = 600.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = httpx.Timeout(read_timeout, connect=connect_timeout)
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=transport,
        )

    async def get_chain_tip(self) -> int:
        try:
            response = await self.client.get("/v1/latest-block")
            response.raise_for_status()
            height = int(response.json()["height"])
        except httpx.HTTPError as e:
            logger.error(f"Failed to fetch chain tip from {self.base_url}: {e}")
            raise ChainServiceError("get_chain_tip", str(e)) from e
        except (KeyError, TypeError, ValueError) as e:
            raise ChainServiceError("get_chain_tip", f"malformed response: {e}") from e

        logger.debug(f"Chain tip: {height}")
        return height

    async def get_tree_state(self, height: int) -> TreeState:
        try:
            response = await self.client.get(f"/v1/tree-state/{height}")
            response.raise_for_status()
            return TreeState.model_validate_json(response.content)
        except httpx.HTTPError as e:
            logger.error(f"Failed to fetch tree state at {height}: {e}")
            raise TreeStateUnavailableError("get_tree_state", str(e), height) from e
        except ValidationError as e:
            raise TreeStateUnavailableError(
                "get_tree_state", f"malformed tree state: {e}", height
            ) from e

    async def stream_blocks(
        self, start_height: int, end_height: int
    ) -> AsyncIterator[CompactBlock]:
        if start_height > end_height:
            return

        expected = start_height
        params = {"start": start_height, "end": end_height}
        try:
            async with self.client.stream("GET", "/v1/blocks", params=params) as response:
                response.raise_for_status()
                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    block = CompactBlock.model_validate_json(line)
                    if block.height != expected:
                        raise ChainServiceError(
                            "stream_blocks",
                            f"expected block {expected}, got {block.height}",
                            start_height,
                            end_height,
                        )
                    expected += 1
                    yield block
        except httpx.HTTPError as e:
            logger.warning(f"Block stream [{start_height}, {end_height}] failed: {e}")
            raise ChainServiceError("stream_blocks", str(e), start_height, end_height) from e
        except ValidationError as e:
            raise ChainServiceError(
                "stream_blocks", f"malformed block: {e}", start_height, end_height
            ) from e

        if expected != end_height + 1:
            raise ChainServiceError(
                "stream_blocks",
                f"stream ended early after block {expected - 1}",
                start_height,
                end_height,
            )

    async def broadcast(self, raw_tx: bytes) -> BroadcastResult:
        try:
            response = await self.client.post("/v1/transactions", json={"data": raw_tx.hex()})
            response.raise_for_status()
            result = BroadcastResult.model_validate_json(response.content)
        except httpx.HTTPError as e:
            logger.error(f"Failed to broadcast transaction: {e}")
            raise ChainServiceError("broadcast", str(e)) from e
        except ValidationError as e:
            raise ChainServiceError("broadcast", f"malformed response: {e}") from e

        if result.accepted:
            logger.info(f"Broadcast transaction: {result.txid}")
        else:
            logger.warning(f"Broadcast rejected (code {result.error_code}): {result.reason}")
        return result

    async def close(self) -> None:
        await self.client.aclose()
