"""
Tests for the lightwalletd gateway client using an httpx mock transport.
"""

from __future__ import annotations

import json
from collections.abc import Callable

import httpx
import pytest
from shieldcore.models import ShieldedPool

from shieldwallet.chain.lightwalletd import LightwalletdClient
from shieldwallet.errors import ChainServiceError, TreeStateUnavailableError

Handler = Callable[[httpx.Request], httpx.Response]


def _client(handler: Handler) -> LightwalletdClient:
    return LightwalletdClient(
        "http://lightwalletd.test/", transport=httpx.MockTransport(handler)
    )


def _ndjson(chain, heights: range) -> bytes:
    return b"".join(chain.block(h).model_dump_json().encode() + b"\n" for h in heights)


class TestChainTip:
    @pytest.mark.asyncio
    async def test_latest_block(self) -> None:
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url.path)
            return httpx.Response(200, json={"height": 2_500_123, "hash": "00" * 32})

        client = _client(handler)
        try:
            assert await client.get_chain_tip() == 2_500_123
        finally:
            await client.close()
        assert seen == ["/v1/latest-block"]

    @pytest.mark.asyncio
    async def test_http_error(self) -> None:
        client = _client(lambda request: httpx.Response(503, text="busy"))
        try:
            with pytest.raises(ChainServiceError, match="get_chain_tip"):
                await client.get_chain_tip()
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_connection_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = _client(handler)
        try:
            with pytest.raises(ChainServiceError, match="connection refused"):
                await client.get_chain_tip()
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_malformed_response(self) -> None:
        client = _client(lambda request: httpx.Response(200, json={"tip": 5}))
        try:
            with pytest.raises(ChainServiceError, match="malformed response"):
                await client.get_chain_tip()
        finally:
            await client.close()


class TestTreeState:
    @pytest.mark.asyncio
    async def test_tree_state(self, chain, account_keys) -> None:
        chain.pay(1000, account_keys, 5_000)
        state = await chain.get_tree_state(1010)

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v1/tree-state/1010"
            return httpx.Response(200, content=state.model_dump_json())

        client = _client(handler)
        try:
            fetched = await client.get_tree_state(1010)
        finally:
            await client.close()

        assert fetched.height == 1010
        assert fetched.frontier(ShieldedPool.ORCHARD).size == 1
        assert fetched.frontier(ShieldedPool.SAPLING).size == 0

    @pytest.mark.asyncio
    async def test_not_found(self) -> None:
        client = _client(lambda request: httpx.Response(404))
        try:
            with pytest.raises(TreeStateUnavailableError) as exc_info:
                await client.get_tree_state(42)
        finally:
            await client.close()
        assert exc_info.value.start_height == 42

    @pytest.mark.asyncio
    async def test_malformed(self) -> None:
        client = _client(lambda request: httpx.Response(200, json={"height": -1}))
        try:
            with pytest.raises(TreeStateUnavailableError, match="malformed tree state"):
                await client.get_tree_state(42)
        finally:
            await client.close()


class TestStreamBlocks:
    @pytest.mark.asyncio
    async def test_stream(self, chain, account_keys) -> None:
        chain.pay(1002, account_keys, 5_000)

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v1/blocks"
            assert request.url.params["start"] == "1000"
            assert request.url.params["end"] == "1004"
            return httpx.Response(200, content=_ndjson(chain, range(1000, 1005)) + b"\n")

        client = _client(handler)
        try:
            blocks = [block async for block in client.stream_blocks(1000, 1004)]
        finally:
            await client.close()

        assert [block.height for block in blocks] == [1000, 1001, 1002, 1003, 1004]
        assert blocks[2].vtx[0].outputs[0].pool is ShieldedPool.ORCHARD
        assert blocks[2].vtx[0].outputs[0].cmu == chain.txs[1002][0].outputs[0].cmu

    @pytest.mark.asyncio
    async def test_empty_range(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        client = _client(handler)
        try:
            assert [block async for block in client.stream_blocks(10, 9)] == []
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_out_of_order(self, chain) -> None:
        body = _ndjson(chain, range(1000, 1001)) + _ndjson(chain, range(1002, 1003))
        client = _client(lambda request: httpx.Response(200, content=body))
        try:
            with pytest.raises(ChainServiceError, match="expected block 1001, got 1002"):
                _ = [block async for block in client.stream_blocks(1000, 1002)]
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_stream_ends_early(self, chain) -> None:
        body = _ndjson(chain, range(1000, 1002))
        client = _client(lambda request: httpx.Response(200, content=body))
        try:
            with pytest.raises(ChainServiceError, match="ended early after block 1001") as exc:
                _ = [block async for block in client.stream_blocks(1000, 1004)]
        finally:
            await client.close()
        assert (exc.value.start_height, exc.value.end_height) == (1000, 1004)

    @pytest.mark.asyncio
    async def test_malformed_block(self) -> None:
        client = _client(lambda request: httpx.Response(200, content=b'{"height": "x"}\n'))
        try:
            with pytest.raises(ChainServiceError, match="malformed block"):
                _ = [block async for block in client.stream_blocks(1000, 1000)]
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_server_error(self) -> None:
        client = _client(lambda request: httpx.Response(500))
        try:
            with pytest.raises(ChainServiceError, match=r"stream_blocks \[5, 6\]"):
                _ = [block async for block in client.stream_blocks(5, 6)]
        finally:
            await client.close()


class TestBroadcast:
    @pytest.mark.asyncio
    async def test_accepted(self) -> None:
        raw = b"\x01\x02\x03"
        txid = "ab" * 32

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "POST"
            assert request.url.path == "/v1/transactions"
            assert json.loads(request.content) == {"data": "010203"}
            return httpx.Response(200, json={"error_code": 0, "error_message": txid})

        client = _client(handler)
        try:
            result = await client.broadcast(raw)
        finally:
            await client.close()

        assert result.accepted
        assert result.txid == txid

    @pytest.mark.asyncio
    async def test_rejected_with_hex_reason(self) -> None:
        reason = "bad-txns-sapling-duplicate-nullifier".encode().hex()
        client = _client(
            lambda request: httpx.Response(200, json={"error_code": -26, "error_message": reason})
        )
        try:
            result = await client.broadcast(b"\x00")
        finally:
            await client.close()

        assert not result.accepted
        assert result.txid is None
        assert result.reason == "bad-txns-sapling-duplicate-nullifier"

    @pytest.mark.asyncio
    async def test_rejected_with_plain_reason(self) -> None:
        client = _client(
            lambda request: httpx.Response(
                200, json={"error_code": 18, "error_message": "tx-expiring-soon"}
            )
        )
        try:
            result = await client.broadcast(b"\x00")
        finally:
            await client.close()
        assert result.reason == "tx-expiring-soon"

    @pytest.mark.asyncio
    async def test_transport_failure(self) -> None:
        client = _client(lambda request: httpx.Response(502))
        try:
            with pytest.raises(ChainServiceError, match="broadcast"):
                await client.broadcast(b"\x00")
        finally:
            await client.close()
