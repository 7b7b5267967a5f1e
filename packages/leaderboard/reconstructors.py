"""
Balance reconstruction strategies.

Both walk the vault through a ChainReader and return a Reconstruction whose
balances are all > 0, ordered by first discovery.
"""
import asyncio, time
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

import structlog

from packages.chain.abi import ContractCall, DecodedEvent, EventSpec, TOKENS_STAKED, TOKENS_WITHDRAWN, stake_info, stakers_array
from packages.core.errors import ChainCallError, ReconstructionFailure
from .models import Reconstruction

log = structlog.get_logger(__name__)


class ChainReads(Protocol):
    async def read_batch(self, calls: Sequence[ContractCall]) -> list: ...
    async def query_logs(self, address: str, event: EventSpec, from_block: int, to_block: int) -> List[DecodedEvent]: ...
    async def current_block_height(self) -> int: ...


class Reconstructor(Protocol):
    name: str

    async def reconstruct(self) -> Reconstruction: ...


def _transport_failure(r) -> bool:
    return isinstance(r, ChainCallError) and not r.reverted


class EnumerationReconstructor:
    """Walks the vault's stakersArray page by page, then batch-reads getStakeInfo."""
    name = "enumeration"

    def __init__(self, reader: ChainReads, vault: str, *, page_size: int = 20, max_index: int = 5000):
        self.reader = reader
        self.vault = vault
        self.page_size = page_size
        self.max_index = max_index

    async def discover(self) -> Tuple[List[str], bool]:
        """Returns (addresses in index order, complete).

        Incomplete means max_index was hit, or the last page was cut short by
        transport errors rather than reverts.
        """
        found: List[str] = []
        index = 0
        while True:
            if index > self.max_index:
                log.warning("enumeration_capped", max_index=self.max_index, discovered=len(found))
                return found, False
            page = await self.reader.read_batch([stakers_array(self.vault, i) for i in range(index, index + self.page_size)])
            # a revert marks the end of the array; a transport error leaves it unknown
            valid = [a for a in page if not isinstance(a, BaseException)]
            unreachable = sum(1 for r in page if _transport_failure(r))
            if index == 0 and not valid and unreachable:
                raise ReconstructionFailure("stakersArray unreachable", strategy=self.name)
            found.extend(valid)
            if len(valid) < self.page_size:
                if unreachable:
                    log.warning("enumeration_truncated", index=index, unreachable=unreachable, discovered=len(found))
                return found, not unreachable
            index += self.page_size

    async def balances_of(self, addresses: List[str]) -> Dict[str, int]:
        canonical: Dict[str, str] = {}
        for a in addresses:
            canonical.setdefault(a.lower(), a)
        unique = list(canonical)
        results = await self.reader.read_batch([stake_info(self.vault, canonical[a]) for a in unique])
        if results and all(_transport_failure(r) for r in results):
            raise ReconstructionFailure("getStakeInfo unreachable", strategy=self.name)
        balances: Dict[str, int] = {}
        failed = 0
        for a, r in zip(unique, results):
            if isinstance(r, ChainCallError):
                failed += 1
                amount = 0
            else:
                amount = int(r[0])  # (tokensStaked, rewards)
            if amount > 0:
                balances[canonical[a]] = amount
        if failed:
            log.warning("stake_info_partial", failed=failed, total=len(unique))
        return balances

    async def reconstruct(self) -> Reconstruction:
        addresses, complete = await self.discover()
        balances = await self.balances_of(addresses) if addresses else {}
        return Reconstruction(balances=balances, strategy=self.name, complete=complete)


class LogReplayReconstructor:
    """Replays TokensStaked / TokensWithdrawn over the last `window_blocks` blocks.

    Stakers whose only activity predates the window are not seen.
    """
    name = "logs"

    def __init__(self, reader: ChainReads, vault: str, *, window_blocks: int = 2_000_000,
                 increase: EventSpec = TOKENS_STAKED, decrease: EventSpec = TOKENS_WITHDRAWN):
        self.reader = reader
        self.vault = vault
        self.window_blocks = window_blocks
        self.increase = increase
        self.decrease = decrease

    async def _stream(self, event: EventSpec, lo: int, hi: int) -> Optional[List[DecodedEvent]]:
        try:
            return await self.reader.query_logs(self.vault, event, lo, hi)
        except ChainCallError as e:
            log.warning("log_stream_failed", event_name=event.name, error=str(e))
            return None

    async def reconstruct(self) -> Reconstruction:
        try:
            head = await self.reader.current_block_height()
        except ChainCallError as e:
            raise ReconstructionFailure("block height unavailable", strategy=self.name, cause=e) from e
        lo = max(0, head - self.window_blocks)
        inc, dec = await asyncio.gather(self._stream(self.increase, lo, head), self._stream(self.decrease, lo, head))
        if inc is None and dec is None:
            raise ReconstructionFailure("both event streams failed", strategy=self.name)
        return Reconstruction(balances=replay(inc or [], dec or []), strategy=self.name,
                              complete=inc is not None and dec is not None)


def replay(increases: List[DecodedEvent], decreases: List[DecodedEvent]) -> Dict[str, int]:
    """Fold both streams in chain order into per-address running totals; keep totals > 0."""
    tagged = [(e, 1) for e in increases] + [(e, -1) for e in decreases]
    tagged.sort(key=lambda t: (t[0].block_number, t[0].log_index))
    totals: Dict[str, int] = {}
    canonical: Dict[str, str] = {}
    for ev, sign in tagged:
        addr = ev.args["staker"]
        key = addr.lower()
        canonical.setdefault(key, addr)
        totals[key] = totals.get(key, 0) + sign * int(ev.args["amount"])
    return {canonical[k]: v for k, v in totals.items() if v > 0}


class FallbackReconstructor:
    """Runs `secondary` when `primary` fails outright."""

    def __init__(self, primary: Reconstructor, secondary: Reconstructor):
        self.primary = primary
        self.secondary = secondary
        self.name = f"{primary.name}+{secondary.name}"

    async def reconstruct(self) -> Reconstruction:
        try:
            return await self.primary.reconstruct()
        except ReconstructionFailure as e:
            log.warning("reconstruction_fallback", primary=self.primary.name, secondary=self.secondary.name, error=str(e))
            return await self.secondary.reconstruct()


async def timed(reconstructor: Reconstructor) -> Reconstruction:
    t0 = time.perf_counter()
    log.info("reconstruction_start", strategy=reconstructor.name)
    res = await reconstructor.reconstruct()
    log.info("reconstruction_done", strategy=res.strategy, participants=len(res.balances),
             complete=res.complete, elapsed_ms=round((time.perf_counter() - t0) * 1000))
    return res


def make_reconstructor(strategy: str, reader: ChainReads, vault: str, settings) -> Reconstructor:
    enum = EnumerationReconstructor(reader, vault, page_size=settings.page_size, max_index=settings.max_index)
    logs = LogReplayReconstructor(reader, vault, window_blocks=settings.log_window_blocks)
    if strategy == "enumeration":
        return enum
    if strategy == "logs":
        return logs
    if strategy == "enumeration+logs":
        return FallbackReconstructor(enum, logs)
    raise ValueError(f"unknown strategy: {strategy}")
