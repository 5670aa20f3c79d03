"""Expiring key-value store used to suppress duplicate check-run mutations.

Keys:   checks_created:{sha}                        TTL 3600s
        check:{run_id}:{status}:{conclusion}        TTL 600s

A present, unexpired key means the guarded GitHub mutation has been
performed or is in flight.

The orchestrator claims a key with ``check_and_set`` (Redis ``SET NX EX``)
before mutating and ``delete``s it if the mutation fails, so a retry of a
failed delivery is not mistaken for a duplicate. A request that arrives
while another holds the claim is answered as a duplicate even if the
holder later fails and releases; the sender's retry then goes through.
Successful records are only removed by TTL expiry.
"""

import logging
import time
from typing import Optional, Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from checkrun_webhook.core.config import Settings
from checkrun_webhook.core.errors import ConfigurationError, UpstreamError

logger = logging.getLogger(__name__)

_TRUTHY = {"1", "true"}


# ---------------------------------------------------------------------------
# Key helpers
# ---------------------------------------------------------------------------


def checks_created_key(sha: str) -> str:
    return f"checks_created:{sha}"


def check_update_key(
    check_run_id: int,
    status: Optional[str],
    conclusion: Optional[str],
) -> str:
    return f"check:{check_run_id}:{status or 'none'}:{conclusion or 'none'}"


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------


class IdempotencyStore(Protocol):
    async def get(self, key: str) -> Optional[bool]: ...

    async def set(self, key: str, value: bool, ttl_seconds: int) -> None: ...

    async def check_and_set(self, key: str, ttl_seconds: int) -> bool:
        """Atomically claim *key*. Returns True if it was already set."""
        ...

    async def delete(self, key: str) -> None: ...


class RedisIdempotencyStore:
    """Store backed by Redis ``SET key value EX ttl``."""

    def __init__(self, client: aioredis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(
        cls,
        url: str,
        token: str = "",
        timeout: float = 5.0,
    ) -> "RedisIdempotencyStore":
        client = aioredis.Redis.from_url(
            url,
            password=token or None,
            decode_responses=True,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
        )
        return cls(client)

    async def get(self, key: str) -> Optional[bool]:
        try:
            value = await self._client.get(key)
        except RedisError as exc:
            raise UpstreamError(f"idempotency lookup for {key} failed: {exc!r}") from exc
        if value is None:
            return None
        return str(value).lower() in _TRUTHY

    async def set(self, key: str, value: bool, ttl_seconds: int) -> None:
        try:
            await self._client.set(key, "1" if value else "0", ex=ttl_seconds)
        except RedisError as exc:
            raise UpstreamError(f"idempotency write for {key} failed: {exc!r}") from exc

    async def check_and_set(self, key: str, ttl_seconds: int) -> bool:
        try:
            created = await self._client.set(key, "1", ex=ttl_seconds, nx=True)
        except RedisError as exc:
            raise UpstreamError(f"idempotency claim for {key} failed: {exc!r}") from exc
        return not created

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(key)
        except RedisError as exc:
            raise UpstreamError(f"idempotency release for {key} failed: {exc!r}") from exc


class MemoryIdempotencyStore:
    """Process-local store for development and tests.

    Entries expire once their monotonic deadline has passed. Every write
    sweeps out expired entries so the dict stays bounded by live keys.
    """

    def __init__(self) -> None:
        self._entries: dict[str, tuple[bool, float]] = {}

    async def get(self, key: str) -> Optional[bool]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if time.monotonic() >= expires_at:
            del self._entries[key]
            return None
        return value

    def _sweep(self, now: float) -> None:
        expired = [key for key, (_, expires_at) in self._entries.items() if now >= expires_at]
        for key in expired:
            del self._entries[key]

    async def set(self, key: str, value: bool, ttl_seconds: int) -> None:
        now = time.monotonic()
        self._sweep(now)
        self._entries[key] = (value, now + ttl_seconds)

    async def check_and_set(self, key: str, ttl_seconds: int) -> bool:
        # Nothing here awaits, so no other task runs between the read and the write.
        now = time.monotonic()
        self._sweep(now)
        if key in self._entries:
            return True
        self._entries[key] = (True, now + ttl_seconds)
        return False

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

_memory_store: Optional[MemoryIdempotencyStore] = None
_redis_stores: dict[tuple[str, str], RedisIdempotencyStore] = {}


def get_idempotency_store(settings: Settings) -> IdempotencyStore:
    """Return the store selected by ``settings.idempotency_backend``.

    Instances are cached per process so the memory store keeps its
    entries and the Redis connection pool is reused across requests.
    """
    global _memory_store

    backend = settings.idempotency_backend.lower()
    if backend == "memory":
        if _memory_store is None:
            _memory_store = MemoryIdempotencyStore()
        return _memory_store

    if backend == "redis":
        if not settings.redis_url:
            raise ConfigurationError("REDIS_URL not configured")
        cache_key = (settings.redis_url, settings.redis_token)
        store = _redis_stores.get(cache_key)
        if store is None:
            store = RedisIdempotencyStore.from_url(
                settings.redis_url,
                token=settings.redis_token,
                timeout=settings.redis_timeout_seconds,
            )
            _redis_stores[cache_key] = store
        return store

    raise ConfigurationError(f"unknown idempotency backend {settings.idempotency_backend!r}")
