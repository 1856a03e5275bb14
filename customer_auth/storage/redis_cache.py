from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import redis.asyncio as aioredis
from redis.exceptions import LockError

from customer_auth.logging import get_logger
from customer_auth.storage.errors import LockUnavailable

logger = get_logger(__name__)


class RedisCache:
    """Thin Redis wrapper holding sessions, OTP codes and login status hashes."""

    DEFAULT_OPERATION_TIMEOUT = 5.0

    def __init__(
        self,
        redis_url: str,
        *,
        socket_timeout: float = DEFAULT_OPERATION_TIMEOUT,
        lock_timeout: float = 5.0,
        lock_prefix: str = "lock:",
    ):
        self.redis_url = redis_url
        self.lock_timeout = lock_timeout
        self.lock_prefix = lock_prefix
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def verify_connection(self) -> None:
        """Assert Redis connectivity before enabling dependent features."""
        from redis import Redis

        # Short-lived sync client so the async pool is not bound to a startup loop
        sync_client = Redis.from_url(self.redis_url, decode_responses=True)
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    async def hget(self, namespace: str, key: str) -> Optional[str]:
        return await self.client.hget(namespace, key)

    async def hset(self, namespace: str, key: str, value: str) -> None:
        await self.client.hset(namespace, key, value)

    async def hdel(self, namespace: str, key: str) -> bool:
        removed = await self.client.hdel(namespace, key)
        return bool(removed)

    @asynccontextmanager
    async def lock(self, namespace: str, key: str) -> AsyncIterator[None]:
        """Advisory SET NX lock with a lease, shared by every process on this Redis."""
        lease = self.client.lock(
            f"{self.lock_prefix}{namespace}:{key}",
            timeout=self.lock_timeout,
            blocking_timeout=self.lock_timeout,
        )
        acquired = await lease.acquire()
        if not acquired:
            raise LockUnavailable(namespace, key)
        try:
            yield
        finally:
            try:
                await lease.release()
            except LockError as exc:
                # Lease ran out before release; another holder may already own it
                logger.warning(
                    "redis_lock_release_failed",
                    namespace=namespace,
                    error=str(exc),
                )

    async def close(self) -> None:
        """Close Redis connection pool. Call when shutting down or resetting runtime."""
        await self.client.close()
        await self.client.connection_pool.disconnect()
