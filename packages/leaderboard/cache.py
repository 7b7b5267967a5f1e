"""
Snapshot cache over a key-value store with TTL.

Backends raise CacheUnavailableError; SnapshotCache turns that into a miss on
read and a skipped write, so the leaderboard works with no cache at all.
"""
import json, time
from typing import Any, Dict, Optional, Protocol, Tuple

import httpx
import redis.asyncio as redis
import structlog
from pydantic import ValidationError

from packages.core.errors import CacheUnavailableError
from .models import LeaderboardSnapshot

log = structlog.get_logger(__name__)


class KVBackend(Protocol):
    async def get(self, key: str) -> Optional[str]: ...
    async def set(self, key: str, value: str, ttl: int) -> None: ...


class UpstashRestBackend:
    """Upstash-style REST: POST a command array, reply {"result": ...} or {"error": ...}."""

    def __init__(self, url: str, token: str, *, timeout: float = 3.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.url = url.rstrip("/")
        self._http = httpx.AsyncClient(timeout=timeout, transport=transport,
                                       headers={"Authorization": f"Bearer {token}"})

    async def _command(self, *args: Any) -> Any:
        try:
            r = await self._http.post(self.url, json=[str(a) for a in args])
            r.raise_for_status()
            body = r.json()
        except (httpx.HTTPError, ValueError) as e:
            raise CacheUnavailableError(f"kv {args[0]} failed: {e!r}") from e
        if not isinstance(body, dict) or "error" in body:
            raise CacheUnavailableError(f"kv {args[0]} error: {body!r}")
        return body.get("result")

    async def get(self, key: str) -> Optional[str]:
        return await self._command("GET", key)

    async def set(self, key: str, value: str, ttl: int) -> None:
        await self._command("SET", key, value, "EX", ttl)

    async def aclose(self):
        await self._http.aclose()


class RedisBackend:
    def __init__(self, url: str, *, timeout: float = 3.0):
        self._client = redis.from_url(url, decode_responses=True,
                                      socket_timeout=timeout, socket_connect_timeout=timeout)

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self._client.get(key)
        except (redis.RedisError, OSError) as e:
            raise CacheUnavailableError(f"redis GET failed: {e!r}") from e

    async def set(self, key: str, value: str, ttl: int) -> None:
        try:
            await self._client.set(key, value, ex=ttl)
        except (redis.RedisError, OSError) as e:
            raise CacheUnavailableError(f"redis SET failed: {e!r}") from e

    async def aclose(self):
        await self._client.aclose()


class MemoryBackend:
    """Process-local TTL store."""

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._data: Dict[str, Tuple[str, float]] = {}

    async def get(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if not entry:
            return None
        value, expires = entry
        if self._clock() >= expires:
            self._data.pop(key, None)
            return None
        return value

    async def set(self, key: str, value: str, ttl: int) -> None:
        self._data[key] = (value, self._clock() + ttl)


class SnapshotCache:
    def __init__(self, backend: Optional[KVBackend], key: str, ttl: int):
        self.backend = backend
        self.key = key
        self.ttl = ttl

    @property
    def enabled(self) -> bool:
        return self.backend is not None

    async def get(self) -> Optional[LeaderboardSnapshot]:
        if self.backend is None:
            return None
        try:
            raw = await self.backend.get(self.key)
        except CacheUnavailableError as e:
            log.warning("cache_get_failed", key=self.key, error=str(e))
            return None
        if raw is None:
            return None
        try:
            return LeaderboardSnapshot.model_validate(json.loads(raw) if isinstance(raw, str) else raw)
        except (ValueError, ValidationError) as e:
            log.warning("cache_payload_invalid", key=self.key, error=str(e))
            return None

    async def set(self, snapshot: LeaderboardSnapshot) -> None:
        if self.backend is None:
            return
        try:
            await self.backend.set(self.key, json.dumps(snapshot.to_payload()), self.ttl)
        except CacheUnavailableError as e:
            log.warning("cache_set_failed", key=self.key, error=str(e))


def build_backend(cfg, timeout: float = 3.0, memory_fallback: bool = False) -> Optional[KVBackend]:
    if cfg.kv_rest_url and cfg.kv_rest_token:
        return UpstashRestBackend(cfg.kv_rest_url, cfg.kv_rest_token, timeout=timeout)
    if cfg.redis_url:
        return RedisBackend(cfg.redis_url, timeout=timeout)
    if memory_fallback:
        return MemoryBackend()
    log.warning("cache_disabled", reason="no cache credentials")
    return None
