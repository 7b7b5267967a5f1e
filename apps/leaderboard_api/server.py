# http surface: GET /leaderboard
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, Query
from fastapi.responses import JSONResponse

from packages.chain.reader import ChainReader
from packages.chain.rpc_status import select_endpoint
from packages.config.env import Cfg
from packages.config.settings import LeaderboardSettings
from packages.core.errors import UnauthorizedRefreshError
from packages.leaderboard.cache import SnapshotCache, build_backend
from packages.leaderboard.reconstructors import make_reconstructor
from packages.leaderboard.service import LeaderboardService

log = structlog.get_logger(__name__)

async def build_service(cfg: Cfg, settings: LeaderboardSettings):
    """Returns (service, resources-to-close)."""
    url = await select_endpoint(cfg.rpc_candidates())
    reader = ChainReader(url, timeout=settings.rpc_timeout_sec, multicall_address=cfg.multicall_address,
                         multicall_chunk=settings.multicall_chunk, log_chunk_blocks=settings.log_chunk_blocks,
                         max_concurrency=settings.max_concurrency, rps=settings.rps)
    backend = build_backend(cfg, timeout=settings.cache_timeout_sec, memory_fallback=settings.memory_cache)
    cache = SnapshotCache(backend, settings.cache_key, settings.cache_ttl_sec)
    service = LeaderboardService(make_reconstructor(settings.strategy, reader, cfg.vault_address, settings),
                                 cache, admin_secret=cfg.cache_secret, top_n=settings.top_n)
    log.info("leaderboard_ready", rpc=url, strategy=settings.strategy, cache=type(backend).__name__ if backend else None,
             cache_key=settings.cache_key, ttl=settings.cache_ttl_sec)
    return service, [r for r in (reader, backend) if hasattr(r, "aclose")]

def create_app(cfg: Optional[Cfg] = None, settings: Optional[LeaderboardSettings] = None,
               service: Optional[LeaderboardService] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        closers = []
        if service is None:
            app.state.service, closers = await build_service(cfg or Cfg(), settings or LeaderboardSettings())
        else:
            app.state.service = service
        try:
            yield
        finally:
            for r in closers:
                await r.aclose()

    app = FastAPI(title="vault-leaderboard", lifespan=lifespan)

    @app.get("/leaderboard")
    @app.get("/api/top-stakers")
    async def leaderboard(force: Optional[str] = Query(None), secret: Optional[str] = Query(None)):
        # only the literal "true" forces a refresh; anything else is a normal read
        try:
            snap = await app.state.service.get(force=force == "true", secret=secret)
        except UnauthorizedRefreshError:
            return JSONResponse({"error": "Unauthorized"}, status_code=401)
        return JSONResponse(snap.to_payload())

    @app.get("/healthz")
    async def healthz():
        return {"status": "ok"}

    return app
