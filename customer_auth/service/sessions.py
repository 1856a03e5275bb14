from __future__ import annotations

import uuid
from datetime import timedelta
from typing import Optional

from customer_auth.logging import get_logger
from customer_auth.service.common import (
    DEFAULT_STORE_TIMEOUT,
    Clock,
    bounded,
    key_lock,
    utcnow,
)
from customer_auth.storage.ephemeral import SESSIONS_BY_CUSTOMER, TOKENS, EphemeralStore
from customer_auth.storage.models import SessionRecord

logger = get_logger(__name__)


class SessionManager:
    """Single live bearer token per customer.

    ``customers`` maps a customer id to its current token and ``tokens`` maps
    a token to its record. Issuing a new token deletes the previous token's
    record, so at most one token validates at a time.
    """

    def __init__(
        self,
        store: EphemeralStore,
        *,
        ttl_minutes: int = 60,
        clock: Optional[Clock] = None,
        timeout: float = DEFAULT_STORE_TIMEOUT,
    ) -> None:
        self.store = store
        self.ttl = timedelta(minutes=ttl_minutes)
        self._now = clock or utcnow
        self.timeout = timeout

    async def current_token(self, customer_id: str) -> Optional[str]:
        return await bounded(
            self.store.hget(SESSIONS_BY_CUSTOMER, customer_id),
            self.timeout,
            operation="session_index_read",
        )

    async def issue(self, customer_id: str, role: str = "customer") -> str:
        token = str(uuid.uuid4())
        record = SessionRecord(customer_id=customer_id, role=role, expires_at=self._now() + self.ttl)
        async with key_lock(self.store, SESSIONS_BY_CUSTOMER, customer_id):
            previous = await self.current_token(customer_id)
            if previous:
                await bounded(
                    self.store.hdel(TOKENS, previous), self.timeout, operation="session_delete"
                )
            await bounded(
                self.store.hset(SESSIONS_BY_CUSTOMER, customer_id, token),
                self.timeout,
                operation="session_index_write",
            )
            await bounded(
                self.store.hset(TOKENS, token, record.dumps()),
                self.timeout,
                operation="session_write",
            )
        logger.info(
            "session_issued",
            customer_id=customer_id,
            role=role,
            superseded=bool(previous),
            expires_at=record.expires_at.isoformat(),
        )
        return token

    async def validate(self, token: str) -> Optional[SessionRecord]:
        """Return the session behind ``token``, or None if unknown or expired."""
        if not token:
            return None
        raw = await bounded(self.store.hget(TOKENS, token), self.timeout, operation="session_read")
        if not raw:
            return None
        record = SessionRecord.loads(raw)
        if record.expires_at <= self._now():
            return None
        return record

    async def revoke_all(self, customer_id: str) -> bool:
        async with key_lock(self.store, SESSIONS_BY_CUSTOMER, customer_id):
            token = await self.current_token(customer_id)
            await bounded(
                self.store.hdel(SESSIONS_BY_CUSTOMER, customer_id),
                self.timeout,
                operation="session_index_delete",
            )
            if token:
                await bounded(
                    self.store.hdel(TOKENS, token), self.timeout, operation="session_delete"
                )
        logger.info("sessions_revoked", customer_id=customer_id, had_token=bool(token))
        return bool(token)
