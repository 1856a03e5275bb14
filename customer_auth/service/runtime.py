from __future__ import annotations

import asyncio
import threading
from typing import Optional, Union
from urllib.parse import urlparse, urlunparse

from customer_auth.config import Settings, get_settings, reset_settings_cache
from customer_auth.logging import get_logger
from customer_auth.service.assets import ImageStorage
from customer_auth.service.credentials import Argon2CredentialHasher, SecretsCodeGenerator
from customer_auth.service.customers import CustomerService
from customer_auth.service.decision import AuthDecisionEngine
from customer_auth.service.lockout import LockoutPolicy
from customer_auth.service.otp import OtpService
from customer_auth.service.sessions import SessionManager
from customer_auth.storage.ephemeral import MemoryCache
from customer_auth.storage.memory import MemoryStore
from customer_auth.storage.postgres import PostgresStore
from customer_auth.storage.redis_cache import RedisCache

logger = get_logger(__name__)


def _redis_url_for_log(url: Optional[str]) -> Optional[str]:
    """Drop the password from a Redis URL so it can be logged."""
    if not url:
        return url
    try:
        parsed = urlparse(url)
    except ValueError:
        return "<unparsable>"
    if not parsed.password:
        return url
    host = parsed.hostname or ""
    if parsed.port:
        host = f"{host}:{parsed.port}"
    return urlunparse(parsed._replace(netloc=f"{parsed.username or ''}:***@{host}"))


class Runtime:
    """Builds and owns every store and service for the FastAPI app."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        logger.info(
            "runtime_init_started",
            use_memory_store=self.settings.use_memory_store,
            test_mode=self.settings.test_mode,
        )

        try:
            self.store: Union[MemoryStore, PostgresStore] = (
                MemoryStore()
                if self.settings.use_memory_store
                else PostgresStore(self.settings.database_url)
            )
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type="memory" if self.settings.use_memory_store else "postgres",
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise

        self.cache: Union[RedisCache, MemoryCache] = self._build_cache()

        timeout = self.settings.store_timeout_seconds
        self.hasher = Argon2CredentialHasher()
        self.otp = OtpService(
            self.cache,
            generator=SecretsCodeGenerator(),
            ttl_seconds=self.settings.otp_ttl_seconds,
            timeout=timeout,
        )
        self.lockout = LockoutPolicy(
            self.cache, block_seconds=self.settings.lockout_block_seconds, timeout=timeout
        )
        self.sessions = SessionManager(
            self.cache, ttl_minutes=self.settings.session_ttl_minutes, timeout=timeout
        )
        self.decision = AuthDecisionEngine(self.store, timeout=timeout)
        self.images = ImageStorage(
            self.settings.image_storage_dir,
            base_url=self.settings.api_url,
            max_bytes=self.settings.max_upload_bytes,
        )
        self.customers = CustomerService(
            self.store,
            hasher=self.hasher,
            otp=self.otp,
            lockout=self.lockout,
            decision=self.decision,
            sessions=self.sessions,
            images=self.images,
            timeout=timeout,
        )

        logger.info(
            "runtime_initialized",
            store_type="memory" if self.settings.use_memory_store else "postgres",
            redis_enabled=isinstance(self.cache, RedisCache),
            dev_code_getter=self.settings.expose_otp_endpoint,
        )

    def _build_cache(self) -> Union[RedisCache, MemoryCache]:
        redis_error: Exception | None = None
        if self.settings.redis_url:
            try:
                cache = RedisCache(
                    self.settings.redis_url,
                    socket_timeout=self.settings.store_timeout_seconds,
                    lock_timeout=self.settings.lock_timeout_seconds,
                )
                cache.verify_connection()
                return cache
            except Exception as exc:
                redis_error = exc

        if not self.settings.test_mode and not self.settings.allow_redis_fallback_dev:
            raise RuntimeError(
                "Redis is required for sessions, one-time codes and login lockout; "
                "start Redis or set TEST_MODE=true/ALLOW_REDIS_FALLBACK_DEV=true for local fallback."
            ) from redis_error

        fallback_mode = "TEST_MODE" if self.settings.test_mode else "ALLOW_REDIS_FALLBACK_DEV"
        logger.warning(
            "redis_disabled_fallback",
            redis_url=_redis_url_for_log(self.settings.redis_url),
            error=str(redis_error) if redis_error else "redis_url_missing",
            message=(
                f"Running without Redis under {fallback_mode}; sessions, codes and lockout "
                "state live in this process only."
            ),
            mode=fallback_mode,
        )
        return MemoryCache(lock_wait_seconds=self.settings.lock_timeout_seconds)

    async def close(self) -> None:
        await self.cache.close()
        if isinstance(self.store, PostgresStore):
            await asyncio.to_thread(self.store.close)


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Process-wide runtime, built on first use.

    The unlocked read is the fast path; creation re-checks under the lock so
    concurrent first requests build a single instance.
    """
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""

    global runtime

    with _runtime_lock:
        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime(settings)
        return runtime
