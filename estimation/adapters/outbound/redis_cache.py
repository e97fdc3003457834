"""Cache adapters implementing CachePort for project structure views.

Keys are namespaced per project (``projet:<id>:...``) so that a committed
mutation can drop everything cached for its project with one prefix.
"""

from __future__ import annotations

import json
import logging
import threading
import time

import redis

from domain.ports import CachePort

logger = logging.getLogger(__name__)


def cle_projet(projet_id: int, vue: str = "") -> str:
    """Cache key for *vue* of a project; ``cle_projet(id)`` is its prefix."""
    return f"projet:{projet_id}:{vue}"


def cle_generation(projet_id: int) -> str:
    """Key of the project's cache generation token, outside the ``cle_projet`` prefix."""
    return f"generation:projet:{projet_id}"


class RedisCacheAdapter(CachePort):
    """CachePort backed by Redis with JSON serialization.

    With *redis_client* set to ``None`` every operation is a no-op, so the
    engine runs unchanged where no Redis is deployed.
    """

    PREFIX = "estimation:"

    def __init__(self, redis_client=None, prefix: str | None = None):
        self._redis = redis_client
        self._prefix = prefix if prefix is not None else self.PREFIX

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    # ── CachePort interface ──────────────────────────────────────────────

    def get(self, key: str) -> object | None:
        if not self._redis:
            return None
        raw = self._redis.get(self._key(key))
        if raw is None:
            return None
        return json.loads(raw)

    def set(self, key: str, value: object, ttl: int = 3600) -> None:
        if not self._redis:
            return
        self._redis.setex(self._key(key), ttl, json.dumps(value, default=str))

    def invalidate(self, prefix: str) -> None:
        if not self._redis:
            return
        keys = list(self._redis.scan_iter(match=f"{self._key(prefix)}*"))
        if keys:
            self._redis.delete(*keys)


class InMemoryCacheAdapter(CachePort):
    """Thread-safe dict cache honouring TTLs; for tests and single-process runs.

    Values are stored JSON-encoded like in Redis, so every ``get`` returns
    a fresh copy.
    """

    def __init__(self, clock=time.monotonic):
        self._store: dict[str, tuple[float, str]] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def get(self, key: str) -> object | None:
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            expires_at, raw = entry
            if expires_at <= self._clock():
                del self._store[key]
                return None
        return json.loads(raw)

    def set(self, key: str, value: object, ttl: int = 3600) -> None:
        raw = json.dumps(value, default=str)
        with self._lock:
            self._store[key] = (self._clock() + ttl, raw)

    def invalidate(self, prefix: str) -> None:
        with self._lock:
            for k in [k for k in self._store if k.startswith(prefix)]:
                del self._store[k]


def creer_cache(redis_url: str | None) -> RedisCacheAdapter:
    """Connect to Redis when *redis_url* is set and reachable, else a no-op cache."""
    client = None
    if redis_url:
        try:
            client = redis.from_url(redis_url)
            client.ping()
        except redis.RedisError:
            logger.warning("Redis injoignable (%s), cache désactivé", redis_url)
            client = None
    return RedisCacheAdapter(redis_client=client)
