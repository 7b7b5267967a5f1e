import asyncio, time
from typing import List, Literal, Optional, Sequence

import httpx
import structlog
from pydantic import BaseModel

log = structlog.get_logger(__name__)

STATUS_TIMEOUT_SEC = 5.0

class RpcStatus(BaseModel):
    url: str
    latency_ms: int
    block_height: int
    status: Literal["Good", "Fair", "Poor"]

def classify(latency_ms: int) -> str:
    if latency_ms > 1500:
        return "Poor"
    if latency_ms > 500:
        return "Fair"
    return "Good"

async def check_rpc_status(url: str, *, timeout: float = STATUS_TIMEOUT_SEC,
                           transport: Optional[httpx.AsyncBaseTransport] = None) -> RpcStatus:
    """eth_blockNumber probe; any failure reports Poor with height 0."""
    clean = url.strip().rstrip("/")
    start = time.perf_counter()
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as h:
            r = await h.post(clean, json={"jsonrpc": "2.0", "method": "eth_blockNumber", "params": [], "id": 1},
                             headers={"Accept": "application/json"})
            r.raise_for_status()
            height = int(r.json()["result"], 16)
    except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
        log.warning("rpc_status_failed", url=clean, error=str(e))
        return RpcStatus(url=clean, latency_ms=0, block_height=0, status="Poor")
    latency = round((time.perf_counter() - start) * 1000)
    return RpcStatus(url=clean, latency_ms=latency, block_height=height, status=classify(latency))

async def check_all(urls: Sequence[str], **kw) -> List[RpcStatus]:
    return list(await asyncio.gather(*(check_rpc_status(u, **kw) for u in urls)))

async def select_endpoint(candidates: Sequence[str], **kw) -> str:
    """First candidate (in preference order) that is not Poor, then the first slow
    one that still answered, else the first candidate."""
    if not candidates:
        raise ValueError("no RPC endpoints configured")
    statuses = await check_all(candidates, **kw)
    for st in statuses:
        if st.status != "Poor":
            log.info("rpc_selected", url=st.url, latency_ms=st.latency_ms, block_height=st.block_height)
            return st.url
    for st in statuses:
        if st.block_height > 0:
            log.warning("rpc_selected_slow", url=st.url, latency_ms=st.latency_ms, block_height=st.block_height)
            return st.url
    log.warning("rpc_all_poor", fallback=candidates[0])
    return candidates[0]
