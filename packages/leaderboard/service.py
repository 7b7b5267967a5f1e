import hmac
from typing import Optional

import structlog

from packages.core.errors import ReconstructionFailure, UnauthorizedRefreshError
from .cache import SnapshotCache
from .models import LeaderboardSnapshot
from .ranker import TOP_N, build_snapshot
from .reconstructors import Reconstructor, timed

log = structlog.get_logger(__name__)


class LeaderboardService:
    """
    cache -> (hit) return
          -> (miss | authorized force) reconstruct -> build -> cache write -> return
    Any reconstruction/build error returns the last good snapshot, else an empty one.
    """

    def __init__(self, reconstructor: Reconstructor, cache: SnapshotCache,
                 admin_secret: Optional[str] = None, top_n: int = TOP_N):
        self.reconstructor = reconstructor
        self.cache = cache
        self.admin_secret = admin_secret
        self.top_n = top_n
        # written only after a successful build, read only by the fallback path
        self._last_good: Optional[LeaderboardSnapshot] = None

    def authorize(self, secret: Optional[str]) -> None:
        if not self.admin_secret or not secret or not hmac.compare_digest(secret.encode(), self.admin_secret.encode()):
            log.warning("force_refresh_rejected")
            raise UnauthorizedRefreshError("invalid refresh secret")

    async def get(self, force: bool = False, secret: Optional[str] = None) -> LeaderboardSnapshot:
        if force:
            self.authorize(secret)
        else:
            cached = await self.cache.get()
            if cached is not None:
                log.debug("cache_hit", key=self.cache.key)
                return cached
            log.debug("cache_miss", key=self.cache.key)
        return await self.refresh()

    async def refresh(self) -> LeaderboardSnapshot:
        try:
            rec = await timed(self.reconstructor)
            snap = build_snapshot(rec, self.top_n)
        except ReconstructionFailure as e:
            log.error("reconstruction_failed", strategy=e.strategy or self.reconstructor.name, error=str(e))
            return self.fallback()
        except Exception:
            log.exception("leaderboard_build_error", strategy=self.reconstructor.name)
            return self.fallback()
        self._last_good = snap
        await self.cache.set(snap)
        return snap

    def fallback(self) -> LeaderboardSnapshot:
        if self._last_good is not None:
            return self._last_good
        return LeaderboardSnapshot.empty(strategy=self.reconstructor.name)
