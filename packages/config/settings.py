# leaderboard tuning (yaml)
import os
from typing import Literal, Optional
import yaml
from pydantic import BaseModel, Field
from .constants import CACHE_KEY, CACHE_TTL_SEC

Strategy = Literal["enumeration", "logs", "enumeration+logs"]

class LeaderboardSettings(BaseModel):
    strategy: Strategy = "enumeration"
    top_n: int = Field(5, ge=1)
    page_size: int = Field(20, ge=1)
    max_index: int = Field(5000, ge=0)
    log_window_blocks: int = Field(2_000_000, ge=1)
    log_chunk_blocks: int = Field(10_000, ge=1)
    multicall_chunk: int = Field(200, ge=1)
    cache_key: str = CACHE_KEY
    cache_ttl_sec: int = Field(CACHE_TTL_SEC, ge=1)
    rpc_timeout_sec: float = 10.0
    cache_timeout_sec: float = 3.0
    max_concurrency: int = Field(20, ge=1)
    rps: Optional[float] = None
    memory_cache: bool = False  # in-process cache when no kv/redis is configured

def load_settings(path: str) -> LeaderboardSettings:
    if not os.path.exists(path):
        return LeaderboardSettings()
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    return LeaderboardSettings(**raw.get("leaderboard", raw))
