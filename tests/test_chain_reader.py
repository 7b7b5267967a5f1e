import asyncio
import json

import httpx
import pytest
from eth_abi import decode, encode
from eth_utils import function_signature_to_4byte_selector

from packages.chain.abi import TOKENS_STAKED, stake_info, stakers_array
from packages.chain.reader import ChainReader
from packages.core.errors import ChainCallError
from tests.conftest import addr

RPC = "https://rpc.test"
MULTICALL = "0xcA11bde05977b3631167028862bE2a173976CA11"
STAKE_SEL = "0x" + function_signature_to_4byte_selector("getStakeInfo(address)").hex()
INDEX_SEL = "0x" + function_signature_to_4byte_selector("stakersArray(uint256)").hex()


def ok(req_body, result):
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": req_body["id"], "result": result})


def rpc_error(req_body, code, message):
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": req_body["id"], "error": {"code": code, "message": message}})


def hexdata(types, values):
    return "0x" + encode(types, values).hex()


def reader(handler, **kw):
    return ChainReader(RPC, transport=httpx.MockTransport(handler), **kw)


@pytest.mark.asyncio
async def test_read_one_decodes_checksummed_address(vault):
    def handler(request):
        body = json.loads(request.content)
        assert body["method"] == "eth_call"
        assert body["params"][0]["data"].startswith(INDEX_SEL)
        return ok(body, hexdata(["address"], [addr(5).lower()]))

    async with reader(handler) as r:
        assert await r.read_one(stakers_array(vault, 3)) == addr(5)


@pytest.mark.asyncio
async def test_revert_is_flagged(vault):
    def handler(request):
        return rpc_error(json.loads(request.content), 3, "execution reverted")

    async with reader(handler) as r:
        with pytest.raises(ChainCallError) as exc:
            await r.read_one(stakers_array(vault, 99))
    assert exc.value.reverted
    assert exc.value.method == "eth_call"


@pytest.mark.asyncio
async def test_transport_errors_become_chain_call_errors(vault):
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    async with reader(handler) as r:
        with pytest.raises(ChainCallError) as exc:
            await r.read_one(stakers_array(vault, 0))
    assert not exc.value.reverted
    assert exc.value.endpoint == RPC


@pytest.mark.asyncio
async def test_http_status_errors_become_chain_call_errors():
    async with reader(lambda request: httpx.Response(503, text="busy")) as r:
        with pytest.raises(ChainCallError):
            await r.current_block_height()


@pytest.mark.asyncio
async def test_block_height():
    async with reader(lambda request: ok(json.loads(request.content), "0x1f4")) as r:
        assert await r.current_block_height() == 500


@pytest.mark.asyncio
async def test_batch_without_multicall_isolates_failures(vault):
    stakes = {addr(0).lower(): 10, addr(2).lower(): 30}

    def handler(request):
        body = json.loads(request.content)
        data = body["params"][0]["data"]
        who = "0x" + data[-40:]
        if who == addr(1).lower():
            return rpc_error(body, -32000, "header not found")
        return ok(body, hexdata(["uint256", "uint256"], [stakes[who], 0]))

    async with reader(handler) as r:
        out = await r.read_batch([stake_info(vault, addr(i)) for i in range(3)])
    assert out[0] == (10, 0)
    assert isinstance(out[1], ChainCallError) and not out[1].reverted
    assert out[2] == (30, 0)


@pytest.mark.asyncio
async def test_batch_uses_aggregate3_with_per_call_status(vault):
    seen = []

    def handler(request):
        body = json.loads(request.content)
        seen.append(body["params"][0]["to"])
        results = [
            (True, encode(["uint256", "uint256"], [7, 1])),
            (False, b""),
            (True, encode(["uint256", "uint256"], [9, 0])),
        ]
        return ok(body, hexdata(["(bool,bytes)[]"], [results]))

    async with reader(handler, multicall_address=MULTICALL) as r:
        out = await r.read_batch([stake_info(vault, addr(i)) for i in range(3)])
    assert seen == [MULTICALL]
    assert out[0] == (7, 1)
    assert isinstance(out[1], ChainCallError) and out[1].reverted
    assert out[2] == (9, 0)


@pytest.mark.asyncio
async def test_batch_is_chunked(vault):
    calls = []

    def handler(request):
        body = json.loads(request.content)
        calls.append(body)
        packed = decode(["(address,bool,bytes)[]"], bytes.fromhex(body["params"][0]["data"][10:]))[0]
        return ok(body, hexdata(["(bool,bytes)[]"], [[(True, encode(["address"], [addr(0)]))] * len(packed)]))

    async with reader(handler, multicall_address=MULTICALL, multicall_chunk=2) as r:
        out = await r.read_batch([stakers_array(vault, i) for i in range(3)])
    assert len(calls) == 2
    assert out == [addr(0)] * 3


@pytest.mark.asyncio
async def test_failed_aggregate_degrades_to_single_calls(vault):
    def handler(request):
        body = json.loads(request.content)
        if body["params"][0]["to"] == MULTICALL:
            return rpc_error(body, -32000, "out of gas")
        return ok(body, hexdata(["uint256", "uint256"], [4, 0]))

    async with reader(handler, multicall_address=MULTICALL) as r:
        out = await r.read_batch([stake_info(vault, addr(i)) for i in range(2)])
    assert out == [(4, 0), (4, 0)]


@pytest.mark.asyncio
async def test_empty_batch_makes_no_requests():
    def handler(request):
        raise AssertionError("no request expected")

    async with reader(handler) as r:
        assert await r.read_batch([]) == []


def _log(staker, amount, block, idx=0):
    return {
        "topics": [TOKENS_STAKED.topic0, hexdata(["address"], [staker])],
        "data": hexdata(["uint256"], [amount]),
        "blockNumber": hex(block),
        "logIndex": hex(idx),
        "transactionHash": "0x" + "ab" * 32,
    }


@pytest.mark.asyncio
async def test_query_logs_windows_and_decodes(vault):
    windows = []

    def handler(request):
        body = json.loads(request.content)
        f = body["params"][0]
        assert f["topics"] == [TOKENS_STAKED.topic0]
        lo, hi = int(f["fromBlock"], 16), int(f["toBlock"], 16)
        windows.append((lo, hi))
        logs = [_log(addr(1), 5, 210, 1), _log(addr(2), 6, 210, 0)] if lo == 200 else []
        if lo == 0:
            logs = [_log(addr(3), 100, 50)]
        return ok(body, logs)

    async with reader(handler, log_chunk_blocks=100) as r:
        events = await r.query_logs(vault, TOKENS_STAKED, 0, 250)
    assert sorted(windows) == [(0, 99), (100, 199), (200, 250)]
    assert [(e.args["staker"], e.args["amount"], e.block_number) for e in events] == [
        (addr(3), 100, 50), (addr(2), 6, 210), (addr(1), 5, 210),
    ]


@pytest.mark.asyncio
async def test_query_logs_empty_range(vault):
    def handler(request):
        raise AssertionError("no request expected")

    async with reader(handler) as r:
        assert await r.query_logs(vault, TOKENS_STAKED, 10, 5) == []


@pytest.mark.asyncio
async def test_query_logs_malformed_entry_fails(vault):
    def handler(request):
        body = json.loads(request.content)
        return ok(body, [{"topics": [TOKENS_STAKED.topic0], "data": "0x"}])

    async with reader(handler) as r:
        with pytest.raises(ChainCallError):
            await r.query_logs(vault, TOKENS_STAKED, 0, 10)


@pytest.mark.asyncio
async def test_failed_window_waits_for_sibling_windows(vault):
    finished = []

    async def handler(request):
        body = json.loads(request.content)
        lo = int(body["params"][0]["fromBlock"], 16)
        if lo == 0:
            return rpc_error(body, -32005, "query returned more than 10000 results")
        await asyncio.sleep(0.05)
        finished.append(lo)
        return ok(body, [])

    async with reader(handler, log_chunk_blocks=100) as r:
        with pytest.raises(ChainCallError):
            await r.query_logs(vault, TOKENS_STAKED, 0, 299)
    assert sorted(finished) == [100, 200]
