from typing import Callable, Dict, List, Optional, Sequence, Set

import pytest
from eth_utils import to_checksum_address

from packages.chain.abi import GET_STAKE_INFO, STAKERS_ARRAY, ContractCall, DecodedEvent, EventSpec
from packages.core.errors import ChainCallError

VAULT = "0xf61Bd4a5D34BCEeFdcB1534f17eFafe7B9c2F92B"


def addr(i: int) -> str:
    return to_checksum_address(f"0x{i + 1:040x}")


def ev(name: str, staker: str, amount: int, block: int, log_index: int = 0) -> DecodedEvent:
    return DecodedEvent(name=name, args={"staker": staker, "amount": amount}, block_number=block, log_index=log_index)


class FakeChain:
    """In-memory vault behind the ChainReader surface; counts every call."""

    def __init__(self, index: Optional[List[str]] = None, stakes: Optional[Dict[str, int]] = None,
                 index_fn: Optional[Callable[[int], Optional[str]]] = None,
                 failing_stakes: Optional[Set[str]] = None, transport_down: bool = False,
                 events: Optional[Dict[str, List[DecodedEvent]]] = None,
                 failing_streams: Optional[Set[str]] = None, head: int = 1_000_000,
                 index_down: Optional[Callable[[int], bool]] = None):
        self.index = index or []
        self.index_fn = index_fn
        self.stakes = stakes or {}
        self.failing_stakes = failing_stakes or set()
        self.transport_down = transport_down
        self.events = events or {}
        self.failing_streams = failing_streams or set()
        self.head = head
        self.index_down = index_down
        self.calls = 0
        self.log_queries: List[tuple] = []

    def _index_at(self, i: int) -> Optional[str]:
        if self.index_fn is not None:
            return self.index_fn(i)
        return self.index[i] if i < len(self.index) else None

    def _one(self, call: ContractCall):
        if self.transport_down:
            return ChainCallError("connection refused", method="eth_call")
        if call.signature == STAKERS_ARRAY:
            if self.index_down is not None and self.index_down(call.args[0]):
                return ChainCallError("timeout", method="eth_call")
            a = self._index_at(call.args[0])
            return a if a is not None else ChainCallError("execution reverted", method="eth_call", reverted=True)
        if call.signature == GET_STAKE_INFO:
            who = call.args[0]
            if who in self.failing_stakes:
                return ChainCallError("timeout", method="eth_call")
            return (self.stakes.get(who, 0), 0)
        raise AssertionError(f"unexpected call {call.signature}")

    async def read_batch(self, calls: Sequence[ContractCall]) -> list:
        self.calls += 1
        return [self._one(c) for c in calls]

    async def current_block_height(self) -> int:
        self.calls += 1
        if self.transport_down:
            raise ChainCallError("connection refused", method="eth_blockNumber")
        return self.head

    async def query_logs(self, address: str, event: EventSpec, from_block: int, to_block: int) -> List[DecodedEvent]:
        self.calls += 1
        self.log_queries.append((event.name, from_block, to_block))
        if self.transport_down or event.name in self.failing_streams:
            raise ChainCallError("getLogs failed", method="eth_getLogs")
        return [e for e in self.events.get(event.name, []) if from_block <= e.block_number <= to_block]


@pytest.fixture
def vault():
    return VAULT
