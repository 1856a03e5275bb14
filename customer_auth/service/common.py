from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Awaitable, Callable, TypeVar

from customer_auth.logging import get_logger
from customer_auth.service.errors import ServiceUnavailable
from customer_auth.storage.ephemeral import EphemeralStore
from customer_auth.storage.errors import LockUnavailable

logger = get_logger(__name__)

T = TypeVar("T")

Clock = Callable[[], datetime]

DEFAULT_STORE_TIMEOUT = 5.0


def utcnow() -> datetime:
    """Timezone-aware UTC helper to avoid naive datetime usage."""

    return datetime.now(timezone.utc)


async def bounded(awaitable: Awaitable[T], timeout: float, *, operation: str) -> T:
    """Await a store call, converting a stall into ``ServiceUnavailable``."""
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError as exc:
        logger.error("store_call_timeout", operation=operation, timeout=timeout)
        raise ServiceUnavailable(f"{operation} timed out") from exc


async def run_blocking(
    func: Callable[..., T], *args: Any, timeout: float, operation: str
) -> T:
    """Run a synchronous repository method off the event loop with a deadline."""
    return await bounded(asyncio.to_thread(func, *args), timeout, operation=operation)


@asynccontextmanager
async def key_lock(store: EphemeralStore, namespace: str, key: str) -> AsyncIterator[None]:
    """Serialize read-modify-write sequences on one ephemeral key."""
    try:
        async with store.lock(namespace, key):
            yield
    except LockUnavailable as exc:
        logger.error("ephemeral_lock_unavailable", namespace=namespace)
        raise ServiceUnavailable("state is busy, retry shortly") from exc
