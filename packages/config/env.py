# config environment
import os
from typing import Optional, List
from dotenv import load_dotenv
from pydantic import BaseModel
from .constants import SEI_CHAIN_ID, VAULT_CONTRACT_ADDRESS, STAKING_TOKEN_ADDRESS, MULTICALL3_ADDRESS, PUBLIC_RPC_URLS, DEFAULT_SETTINGS

class Cfg(BaseModel):
    rpc_url: Optional[str] = None
    chain_id: int = SEI_CHAIN_ID
    vault_address: str = VAULT_CONTRACT_ADDRESS
    staking_token_address: str = STAKING_TOKEN_ADDRESS
    multicall_address: Optional[str] = MULTICALL3_ADDRESS
    cache_secret: Optional[str] = None
    kv_rest_url: Optional[str] = None
    kv_rest_token: Optional[str] = None
    redis_url: Optional[str] = None
    settings_path: str = DEFAULT_SETTINGS

    def rpc_candidates(self) -> List[str]:
        """Configured override first, then the public fallback chain."""
        urls = [self.rpc_url] if self.rpc_url else []
        return urls + [u for u in PUBLIC_RPC_URLS if u not in urls]

def _opt(*names: str) -> Optional[str]:
    for n in names:
        v = os.environ.get(n)
        if v:
            return v.strip()
    return None

def load_cfg(env_file: Optional[str] = None) -> Cfg:
    if env_file:
        load_dotenv(env_file)
    multicall = os.environ.get("MULTICALL_ADDRESS", MULTICALL3_ADDRESS).strip()
    return Cfg(
        rpc_url=_opt("RPC_URL"),
        chain_id=int(os.environ.get("CHAIN_ID", SEI_CHAIN_ID)),
        vault_address=os.environ.get("VAULT_CONTRACT_ADDRESS", VAULT_CONTRACT_ADDRESS),
        staking_token_address=os.environ.get("STAKING_TOKEN_ADDRESS", STAKING_TOKEN_ADDRESS),
        multicall_address=multicall or None,
        cache_secret=_opt("CACHE_SECRET"),
        kv_rest_url=_opt("UPSTASH_REDIS_REST_URL", "KV_REST_API_URL"),
        kv_rest_token=_opt("UPSTASH_REDIS_REST_TOKEN", "KV_REST_API_TOKEN"),
        redis_url=_opt("REDIS_URL"),
        settings_path=os.environ.get("LEADERBOARD_CONFIG", DEFAULT_SETTINGS),
    )
