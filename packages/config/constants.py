# chain + deployment constants
SEI_CHAIN_ID = 1329

VAULT_CONTRACT_ADDRESS = "0xf61Bd4a5D34BCEeFdcB1534f17eFafe7B9c2F92B"
STAKING_TOKEN_ADDRESS = "0x65856bb190955c72d4fd9b1b5700b29067018492"  # MOOZ
MULTICALL3_ADDRESS = "0xcA11bde05977b3631167028862bE2a173976CA11"

# known-good public endpoints, tried in order after any configured override
PUBLIC_RPC_URLS = [
    "https://evm-rpc.sei-apis.com",
    "https://sei.api.pocket.network",
    "https://sei-evm-rpc.stakeme.pro",
]

DEFAULT_ENV = "configs/.env"
DEFAULT_SETTINGS = "configs/leaderboard.yml"

# bump the version suffix to invalidate every cached snapshot on deploy
CACHE_KEY = "top_stakers_v3"
CACHE_TTL_SEC = 300
