"""Minimal EVM ABI helpers for the vault reads the leaderboard needs."""
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence, Tuple

from eth_abi import decode, encode
from eth_utils import (
    event_signature_to_log_topic,
    function_signature_to_4byte_selector,
    to_checksum_address,
)


def _arg_types(signature: str) -> List[str]:
    inner = signature[signature.index("(") + 1: signature.rindex(")")]
    return [t.strip() for t in inner.split(",") if t.strip()]


@dataclass(frozen=True)
class ContractCall:
    """One read: `signature` like "getStakeInfo(address)" plus output types."""
    address: str
    signature: str
    args: Tuple[Any, ...] = ()
    outputs: Tuple[str, ...] = ()

    def calldata(self) -> bytes:
        return function_signature_to_4byte_selector(self.signature) + encode(_arg_types(self.signature), list(self.args))

    def decode_result(self, raw: bytes) -> Any:
        values = decode(list(self.outputs), raw)
        values = tuple(to_checksum_address(v) if t == "address" else v for t, v in zip(self.outputs, values))
        return values[0] if len(values) == 1 else values


@dataclass(frozen=True)
class EventSpec:
    name: str
    inputs: Tuple[Tuple[str, str, bool], ...]  # (name, type, indexed)

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(t for _, t, _ in self.inputs)})"

    @property
    def topic0(self) -> str:
        return "0x" + event_signature_to_log_topic(self.signature).hex()


@dataclass(frozen=True)
class DecodedEvent:
    name: str
    args: Dict[str, Any]
    block_number: int
    log_index: int
    tx_hash: str = ""


def _hex_bytes(h: str) -> bytes:
    h = h[2:] if h.startswith("0x") else h
    return bytes.fromhex(h)


def decode_log(spec: EventSpec, log: Dict[str, Any]) -> DecodedEvent:
    topics = log.get("topics") or []
    indexed = [(n, t) for n, t, ix in spec.inputs if ix]
    plain = [(n, t) for n, t, ix in spec.inputs if not ix]
    if len(topics) != len(indexed) + 1:
        raise ValueError(f"{spec.name}: expected {len(indexed) + 1} topics, got {len(topics)}")
    args: Dict[str, Any] = {}
    for (n, t), topic in zip(indexed, topics[1:]):
        args[n] = decode([t], _hex_bytes(topic))[0]
    if plain:
        values = decode([t for _, t in plain], _hex_bytes(log.get("data") or "0x"))
        args.update({n: v for (n, _), v in zip(plain, values)})
    for n, t, _ in spec.inputs:
        if t == "address":
            args[n] = to_checksum_address(args[n])
    return DecodedEvent(
        name=spec.name,
        args=args,
        block_number=int(log.get("blockNumber", "0x0"), 16),
        log_index=int(log.get("logIndex", "0x0"), 16),
        tx_hash=log.get("transactionHash") or "",
    )


# ---- vault surface ----

STAKERS_ARRAY = "stakersArray(uint256)"
GET_STAKE_INFO = "getStakeInfo(address)"

TOKENS_STAKED = EventSpec("TokensStaked", (("staker", "address", True), ("amount", "uint256", False)))
TOKENS_WITHDRAWN = EventSpec("TokensWithdrawn", (("staker", "address", True), ("amount", "uint256", False)))


def stakers_array(vault: str, index: int) -> ContractCall:
    return ContractCall(vault, STAKERS_ARRAY, (index,), ("address",))


def stake_info(vault: str, staker: str) -> ContractCall:
    # returns (tokensStaked, rewards)
    return ContractCall(vault, GET_STAKE_INFO, (to_checksum_address(staker),), ("uint256", "uint256"))


# ---- multicall3 ----

AGGREGATE3 = "aggregate3((address,bool,bytes)[])"


def aggregate3_calldata(calls: Sequence[ContractCall]) -> bytes:
    packed = [(to_checksum_address(c.address), True, c.calldata()) for c in calls]
    return function_signature_to_4byte_selector(AGGREGATE3) + encode(["(address,bool,bytes)[]"], [packed])


def decode_aggregate3(raw: bytes) -> List[Tuple[bool, bytes]]:
    return [(bool(ok), bytes(data)) for ok, data in decode(["(bool,bytes)[]"], raw)[0]]
