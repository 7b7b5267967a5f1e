import asyncio, itertools, time
from typing import Any, Dict, List, Optional, Sequence, Union

import httpx
import structlog
from eth_abi.exceptions import DecodingError

from packages.core.errors import ChainCallError
from .abi import ContractCall, DecodedEvent, EventSpec, aggregate3_calldata, decode_aggregate3, decode_log

log = structlog.get_logger(__name__)

BatchResult = Union[Any, ChainCallError]

def _is_revert(err: Dict[str, Any]) -> bool:
    msg = str(err.get("message", "")).lower()
    return err.get("code") == 3 or "revert" in msg

def _hexint(v: int) -> str:
    return hex(int(v))

class ChainReader:
    """
    JSON-RPC read boundary: eth_call, batched eth_call (multicall3), eth_getLogs,
    eth_blockNumber. Every failure surfaces as ChainCallError; nothing is cached
    or retried here.
    """
    def __init__(self, url: str, *, timeout: float = 10.0, multicall_address: Optional[str] = None,
                 multicall_chunk: int = 200, log_chunk_blocks: int = 10_000,
                 max_concurrency: int = 20, rps: Optional[float] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.url = url
        self.timeout = timeout
        self.multicall_address = multicall_address
        self.multicall_chunk = max(1, multicall_chunk)
        self.log_chunk_blocks = max(1, log_chunk_blocks)
        self._transport = transport
        self._http: Optional[httpx.AsyncClient] = None
        self._ids = itertools.count(1)
        self._sem = asyncio.Semaphore(max(1, max_concurrency))
        # simple start-spacing limiter: at most rps request starts per second
        self._min_interval = 1.0 / rps if rps else 0.0
        self._last_req_ts = 0.0
        self._rl_lock = asyncio.Lock()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    async def aclose(self):
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self.timeout, transport=self._transport,
                                           headers={"Content-Type": "application/json", "Accept": "application/json"})
        return self._http

    async def _rate_limit(self):
        if not self._min_interval:
            return
        async with self._rl_lock:
            wait = self._min_interval - (time.monotonic() - self._last_req_ts)
            if wait > 0:
                await asyncio.sleep(wait)
            self._last_req_ts = time.monotonic()

    async def _rpc(self, method: str, params: List[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        async with self._sem:
            await self._rate_limit()
            try:
                r = await self._client().post(self.url, json=payload)
                r.raise_for_status()
                body = r.json()
            except httpx.HTTPError as e:
                raise ChainCallError(f"{method} transport error: {e!r}", method=method, endpoint=self.url) from e
            except ValueError as e:
                raise ChainCallError(f"{method} returned non-JSON body", method=method, endpoint=self.url) from e
        if not isinstance(body, dict):
            raise ChainCallError(f"{method} malformed response", method=method, endpoint=self.url)
        err = body.get("error")
        if err:
            err = err if isinstance(err, dict) else {"message": str(err)}
            raise ChainCallError(f"{method}: {err.get('message', err)}", method=method,
                                 endpoint=self.url, reverted=_is_revert(err))
        if "result" not in body:
            raise ChainCallError(f"{method} response without result", method=method, endpoint=self.url)
        return body["result"]

    async def _eth_call(self, to: str, data: bytes) -> bytes:
        res = await self._rpc("eth_call", [{"to": to, "data": "0x" + data.hex()}, "latest"])
        try:
            return bytes.fromhex(res[2:] if res.startswith("0x") else res)
        except (AttributeError, TypeError, ValueError) as e:
            raise ChainCallError("eth_call returned non-hex data", method="eth_call", endpoint=self.url) from e

    def _decode(self, call: ContractCall, raw: bytes) -> Any:
        try:
            return call.decode_result(raw)
        except (DecodingError, ValueError) as e:
            # empty return data is what a failed call without reason looks like
            raise ChainCallError(f"{call.signature}: undecodable result ({len(raw)} bytes)",
                                 method="eth_call", endpoint=self.url, reverted=not raw) from e

    async def read_one(self, call: ContractCall) -> Any:
        raw = await self._eth_call(call.address, call.calldata())
        return self._decode(call, raw)

    async def _read_one_or_error(self, call: ContractCall) -> BatchResult:
        try:
            return await self.read_one(call)
        except ChainCallError as e:
            return e

    async def _read_chunk(self, calls: Sequence[ContractCall]) -> List[BatchResult]:
        if not self.multicall_address:
            return list(await asyncio.gather(*(self._read_one_or_error(c) for c in calls)))
        try:
            raw = await self._eth_call(self.multicall_address, aggregate3_calldata(calls))
            pairs = decode_aggregate3(raw)
            if len(pairs) != len(calls):
                raise ChainCallError("aggregate3 result length mismatch", method="eth_call", endpoint=self.url)
        except (ChainCallError, DecodingError, ValueError) as e:
            log.warning("multicall_degraded", calls=len(calls), error=str(e))
            return list(await asyncio.gather(*(self._read_one_or_error(c) for c in calls)))
        out: List[BatchResult] = []
        for call, (ok, data) in zip(calls, pairs):
            if not ok:
                out.append(ChainCallError(f"{call.signature} reverted", method="eth_call",
                                          endpoint=self.url, reverted=True))
                continue
            try:
                out.append(self._decode(call, data))
            except ChainCallError as e:
                out.append(e)
        return out

    async def read_batch(self, calls: Sequence[ContractCall]) -> List[BatchResult]:
        """Results aligned with `calls`; a failed element is a ChainCallError in its slot."""
        calls = list(calls)
        if not calls:
            return []
        chunks = [calls[i:i + self.multicall_chunk] for i in range(0, len(calls), self.multicall_chunk)]
        parts = await asyncio.gather(*(self._read_chunk(c) for c in chunks))
        return [r for part in parts for r in part]

    async def current_block_height(self) -> int:
        res = await self._rpc("eth_blockNumber", [])
        try:
            return int(res, 16)
        except (TypeError, ValueError) as e:
            raise ChainCallError(f"eth_blockNumber malformed: {res!r}", method="eth_blockNumber", endpoint=self.url) from e

    async def _logs_window(self, address: str, event: EventSpec, lo: int, hi: int) -> List[DecodedEvent]:
        res = await self._rpc("eth_getLogs", [{
            "address": address, "topics": [event.topic0],
            "fromBlock": _hexint(lo), "toBlock": _hexint(hi),
        }])
        if not isinstance(res, list):
            raise ChainCallError("eth_getLogs malformed response", method="eth_getLogs", endpoint=self.url)
        try:
            return [decode_log(event, entry) for entry in res]
        except (DecodingError, ValueError, TypeError, AttributeError, KeyError) as e:
            raise ChainCallError(f"{event.name} log undecodable: {e}", method="eth_getLogs", endpoint=self.url) from e

    async def query_logs(self, address: str, event: EventSpec, from_block: int, to_block: int) -> List[DecodedEvent]:
        """Decoded events in block order; the range is split into log_chunk_blocks windows."""
        from_block = max(0, from_block)
        if to_block < from_block:
            return []
        windows = [(lo, min(lo + self.log_chunk_blocks - 1, to_block))
                   for lo in range(from_block, to_block + 1, self.log_chunk_blocks)]
        # settle every window before raising so none is left running in the background
        parts = await asyncio.gather(*(self._logs_window(address, event, lo, hi) for lo, hi in windows),
                                     return_exceptions=True)
        for part in parts:
            if isinstance(part, BaseException):
                raise part
        events = [e for part in parts for e in part]
        events.sort(key=lambda e: (e.block_number, e.log_index))
        return events
