"""Pluggable key-value backend for durable client state (identity, assignments).

Default: InMemoryBackend (single process, zero-dependency, used by tests).
Production: RedisBackend (shared across workers, requires REDIS_URL).

Switch via STATE_BACKEND env var: "memory" (default) | "redis".

Entries written with ``ttl=None`` never expire (visitor identity, assignment
maps). Session-scoped values pass a TTL.
"""

import logging
import random
import time
from abc import ABC, abstractmethod
from functools import lru_cache
from typing import Any

logger = logging.getLogger(__name__)


class StateBackend(ABC):
    """Abstract string key-value store with optional per-key expiry."""

    @abstractmethod
    def set(self, key: str, value: str, ttl: int | None = None) -> None: ...

    @abstractmethod
    def get(self, key: str) -> str | None: ...

    @abstractmethod
    def exists(self, key: str) -> bool: ...

    @abstractmethod
    def delete(self, key: str) -> None: ...


class InMemoryBackend(StateBackend):
    """In-memory backend. Per-process, lost on restart.

    Includes a probabilistic sweep on writes so expired session entries do
    not accumulate.
    """

    # When exceeded, a full sweep runs to evict expired entries.
    _MAX_STORE_SIZE = 50_000

    # Probability of running a full sweep on each set() call.
    _SWEEP_PROBABILITY = 0.01

    def __init__(self) -> None:
        self._store: dict[str, tuple[Any, float | None]] = {}

    @staticmethod
    def _expired(expiry: float | None, now: float) -> bool:
        return expiry is not None and expiry < now

    def _cleanup_expired(self, key: str) -> None:
        entry = self._store.get(key)
        if entry is not None and self._expired(entry[1], time.monotonic()):
            del self._store[key]

    def _maybe_sweep(self) -> None:
        """Evict all expired entries with ~1% probability, or always when oversized."""
        force = len(self._store) >= self._MAX_STORE_SIZE
        if not force and random.random() > self._SWEEP_PROBABILITY:
            return

        now = time.monotonic()
        expired_keys = [k for k, (_, expiry) in self._store.items() if self._expired(expiry, now)]
        for k in expired_keys:
            del self._store[k]

        if expired_keys:
            logger.debug(
                "InMemoryBackend sweep: evicted %d expired entries (store size: %d)",
                len(expired_keys),
                len(self._store),
            )

    def set(self, key: str, value: str, ttl: int | None = None) -> None:
        expiry = time.monotonic() + ttl if ttl is not None else None
        self._store[key] = (value, expiry)
        self._maybe_sweep()

    def get(self, key: str) -> str | None:
        self._cleanup_expired(key)
        entry = self._store.get(key)
        return entry[0] if entry else None

    def exists(self, key: str) -> bool:
        self._cleanup_expired(key)
        return key in self._store

    def delete(self, key: str) -> None:
        self._store.pop(key, None)


class RedisBackend(StateBackend):
    """Redis backend for multi-worker deployments.

    Requires REDIS_URL in settings (e.g., redis://10.0.0.1:6379/0).
    """

    def __init__(self, redis_url: str) -> None:
        try:
            import redis

            self._client = redis.Redis.from_url(redis_url, decode_responses=True)
            self._client.ping()
            # Log only host info, never the full URL (may carry credentials).
            conn = self._client.connection_pool.connection_kwargs
            logger.info(
                "Redis state backend connected: host=%s port=%s db=%s",
                conn.get("host", "?"),
                conn.get("port", "?"),
                conn.get("db", "?"),
            )
        except Exception:
            logger.error("Redis connection failed", exc_info=True)
            raise

    def set(self, key: str, value: str, ttl: int | None = None) -> None:
        if ttl is None:
            self._client.set(key, value)
        else:
            self._client.setex(key, ttl, value)

    def get(self, key: str) -> str | None:
        return self._client.get(key)

    def exists(self, key: str) -> bool:
        return bool(self._client.exists(key))

    def delete(self, key: str) -> None:
        self._client.delete(key)


@lru_cache(maxsize=1)
def get_state_backend() -> StateBackend:
    """Return the configured durable backend singleton."""
    from pagelab.config import get_settings

    settings = get_settings()
    if settings.STATE_BACKEND == "redis":
        if not settings.REDIS_URL:
            logger.warning("STATE_BACKEND=redis but REDIS_URL not set, falling back to memory")
            return InMemoryBackend()
        return RedisBackend(settings.REDIS_URL)
    return InMemoryBackend()
