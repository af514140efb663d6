"""
Shared bearer-token cache and per-tenant refresh lock.

Redis backs both when REDIS_URL is set, so every worker process sees the same
token and only one of them re-authenticates a tenant at a time. Without Redis
an in-process store is used (single worker deployments and tests).
"""
import json
import logging
import threading
import time
from dataclasses import dataclass, asdict
from typing import Callable, Optional

import redis
from redis.connection import ConnectionPool

logger = logging.getLogger(__name__)

TOKEN_KEY = "sankhya:token:{tenant_id}"
LOCK_KEY = "sankhya:token:lock:{tenant_id}"

# Delete the lock only if we still own it
RELEASE_LOCK_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


@dataclass
class TokenCacheEntry:
    """Cached bearer token with its absolute expiry (epoch seconds)."""

    token: str
    expires_at: float
    issued_at: float

    def remaining(self, now: float) -> float:
        return self.expires_at - now

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: str) -> "TokenCacheEntry":
        data = json.loads(raw)
        return cls(token=data["token"], expires_at=float(data["expires_at"]), issued_at=float(data["issued_at"]))


class TokenStore:
    """Interface for the token cache and the tenant lock."""

    def get_token(self, tenant_id: int) -> Optional[TokenCacheEntry]:
        raise NotImplementedError

    def set_token(self, tenant_id: int, entry: TokenCacheEntry, ttl_seconds: int) -> None:
        raise NotImplementedError

    def delete_token(self, tenant_id: int) -> None:
        raise NotImplementedError

    def try_lock(self, tenant_id: int, owner: str, ttl_seconds: int) -> bool:
        """Acquire the tenant lock if free. The lock expires on its own after ttl_seconds."""
        raise NotImplementedError

    def release_lock(self, tenant_id: int, owner: str) -> None:
        """Release the tenant lock if (and only if) ``owner`` still holds it."""
        raise NotImplementedError


class RedisTokenStore(TokenStore):
    """Redis-backed store: JSON token entries with TTL, SET NX PX locks."""

    def __init__(self, redis_url: str, max_connections: int = 20):
        self.pool = ConnectionPool.from_url(redis_url, max_connections=max_connections, decode_responses=True)
        self.client = redis.Redis(connection_pool=self.pool)
        self._release = self.client.register_script(RELEASE_LOCK_SCRIPT)
        logger.info("Redis token store initialized (pool=%d)", max_connections)

    def get_token(self, tenant_id: int) -> Optional[TokenCacheEntry]:
        key = TOKEN_KEY.format(tenant_id=tenant_id)
        try:
            raw = self.client.get(key)
        except redis.RedisError as e:
            # A cache outage degrades to re-authentication, not to a failed sync
            logger.error("Token cache read failed for %s: %s", key, e)
            return None
        if raw is None:
            return None
        try:
            return TokenCacheEntry.from_json(raw)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Discarding unreadable token cache entry %s: %s", key, e)
            return None

    def set_token(self, tenant_id: int, entry: TokenCacheEntry, ttl_seconds: int) -> None:
        key = TOKEN_KEY.format(tenant_id=tenant_id)
        try:
            self.client.setex(key, max(1, int(ttl_seconds)), entry.to_json())
        except redis.RedisError as e:
            logger.error("Token cache write failed for %s: %s", key, e)

    def delete_token(self, tenant_id: int) -> None:
        key = TOKEN_KEY.format(tenant_id=tenant_id)
        try:
            self.client.delete(key)
        except redis.RedisError as e:
            logger.error("Token cache delete failed for %s: %s", key, e)

    def try_lock(self, tenant_id: int, owner: str, ttl_seconds: int) -> bool:
        key = LOCK_KEY.format(tenant_id=tenant_id)
        return bool(self.client.set(key, owner, nx=True, px=int(ttl_seconds * 1000)))

    def release_lock(self, tenant_id: int, owner: str) -> None:
        key = LOCK_KEY.format(tenant_id=tenant_id)
        try:
            self._release(keys=[key], args=[owner])
        except redis.RedisError as e:
            # Lock TTL bounds how long a failed release can block other workers
            logger.error("Token lock release failed for %s: %s", key, e)


class MemoryTokenStore(TokenStore):
    """In-process store with the same expiry semantics as the Redis one."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._guard = threading.Lock()
        self._tokens: dict[int, tuple[TokenCacheEntry, float]] = {}
        self._locks: dict[int, tuple[str, float]] = {}

    def get_token(self, tenant_id: int) -> Optional[TokenCacheEntry]:
        with self._guard:
            item = self._tokens.get(tenant_id)
            if item is None:
                return None
            entry, evict_at = item
            if self._clock() >= evict_at:
                del self._tokens[tenant_id]
                return None
            return entry

    def set_token(self, tenant_id: int, entry: TokenCacheEntry, ttl_seconds: int) -> None:
        with self._guard:
            self._tokens[tenant_id] = (entry, self._clock() + ttl_seconds)

    def delete_token(self, tenant_id: int) -> None:
        with self._guard:
            self._tokens.pop(tenant_id, None)

    def try_lock(self, tenant_id: int, owner: str, ttl_seconds: int) -> bool:
        with self._guard:
            now = self._clock()
            held = self._locks.get(tenant_id)
            if held is not None and held[1] > now:
                return False
            self._locks[tenant_id] = (owner, now + ttl_seconds)
            return True

    def release_lock(self, tenant_id: int, owner: str) -> None:
        with self._guard:
            held = self._locks.get(tenant_id)
            if held is not None and held[0] == owner:
                del self._locks[tenant_id]

    def is_locked(self, tenant_id: int) -> bool:
        with self._guard:
            held = self._locks.get(tenant_id)
            return held is not None and held[1] > self._clock()


def build_token_store(redis_url: str = "") -> TokenStore:
    """Redis store when a URL is configured, otherwise the in-process store."""
    if redis_url:
        return RedisTokenStore(redis_url)
    logger.warning("REDIS_URL not set; token cache and tenant locks are process-local")
    return MemoryTokenStore()
