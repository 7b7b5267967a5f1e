import time
from typing import Dict, List
from pydantic import BaseModel, ConfigDict, Field, field_serializer
from pydantic.alias_generators import to_camel

class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

class StakerBalance(_Frozen):
    address: str
    amount: int = Field(ge=0)

class LeaderboardEntry(StakerBalance):
    share_bps: int = 0  # amount / total_staked in basis points, floored

    @field_serializer("amount")
    def _amount_str(self, v: int) -> str:
        return str(v)

class LeaderboardSnapshot(_Frozen):
    entries: List[LeaderboardEntry] = []
    total_staked: int = Field(0, ge=0)
    participant_count: int = 0
    generated_at: int = 0  # unix ms
    complete: bool = True
    strategy: str = ""

    @field_serializer("total_staked")
    def _total_str(self, v: int) -> str:
        return str(v)

    def to_payload(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def empty(cls, strategy: str = "") -> "LeaderboardSnapshot":
        return cls(generated_at=now_ms(), strategy=strategy, complete=False)

class Reconstruction(BaseModel):
    """One pass' (address -> balance) result, all balances > 0, in discovery order."""
    balances: Dict[str, int]
    strategy: str
    complete: bool = True

def now_ms() -> int:
    return int(time.time() * 1000)
