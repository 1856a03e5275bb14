from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncIterator, Dict, Optional, Protocol, Tuple

from customer_auth.storage.errors import LockUnavailable

# Hash names shared with deployments that already hold live state.
SESSIONS_BY_CUSTOMER = "customers"
TOKENS = "tokens"
OTP = "otp"
LOGIN_STATUS = "customer_login"


class EphemeralStore(Protocol):
    """Hash-of-hashes key/value store with no built-in expiry."""

    async def hget(self, namespace: str, key: str) -> Optional[str]: ...

    async def hset(self, namespace: str, key: str, value: str) -> None: ...

    async def hdel(self, namespace: str, key: str) -> bool: ...

    def lock(self, namespace: str, key: str) -> AsyncContextManager[None]: ...

    def verify_connection(self) -> None: ...

    async def close(self) -> None: ...


class _KeyedLocks:
    """Per-key ``asyncio.Lock`` registry that forgets keys nobody is holding."""

    def __init__(self, wait_timeout: float) -> None:
        self.wait_timeout = wait_timeout
        self._entries: Dict[Tuple[str, str], list] = {}

    def __len__(self) -> int:
        return len(self._entries)

    async def _acquire(self, lock: asyncio.Lock, namespace: str, key: str) -> None:
        """Acquire ``lock`` within the wait timeout.

        The acquire runs as its own task so that a timeout or cancellation
        racing with a successful acquire can hand the lock back.
        """
        acquire = asyncio.ensure_future(lock.acquire())
        try:
            await asyncio.wait_for(asyncio.shield(acquire), self.wait_timeout)
        except BaseException as exc:
            if acquire.done() and not acquire.cancelled():
                lock.release()
            else:
                acquire.cancel()
            if isinstance(exc, asyncio.TimeoutError):
                raise LockUnavailable(namespace, key) from exc
            raise

    @asynccontextmanager
    async def hold(self, namespace: str, key: str) -> AsyncIterator[None]:
        slot = (namespace, key)
        entry = self._entries.get(slot)
        if entry is None:
            entry = [asyncio.Lock(), 0]
            self._entries[slot] = entry
        entry[1] += 1
        try:
            await self._acquire(entry[0], namespace, key)
            try:
                yield
            finally:
                entry[0].release()
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                self._entries.pop(slot, None)


class MemoryCache:
    """In-process stand-in for the Redis hashes, used in tests and local dev.

    Locks only serialize coroutines inside this process.
    """

    def __init__(self, *, lock_wait_seconds: float = 5.0) -> None:
        self._hashes: Dict[str, Dict[str, str]] = {}
        self._locks = _KeyedLocks(lock_wait_seconds)

    async def hget(self, namespace: str, key: str) -> Optional[str]:
        return self._hashes.get(namespace, {}).get(key)

    async def hset(self, namespace: str, key: str, value: str) -> None:
        self._hashes.setdefault(namespace, {})[key] = value

    async def hdel(self, namespace: str, key: str) -> bool:
        return self._hashes.get(namespace, {}).pop(key, None) is not None

    def lock(self, namespace: str, key: str) -> AsyncContextManager[None]:
        return self._locks.hold(namespace, key)

    def verify_connection(self) -> None:
        return None

    async def close(self) -> None:
        self._hashes.clear()

    def snapshot(self, namespace: str) -> Dict[str, str]:
        """Copy of one hash, for inspection in tests and debugging."""
        return dict(self._hashes.get(namespace, {}))

    @property
    def held_lock_count(self) -> int:
        return len(self._locks)


__all__ = [
    "EphemeralStore",
    "MemoryCache",
    "SESSIONS_BY_CUSTOMER",
    "TOKENS",
    "OTP",
    "LOGIN_STATUS",
]
