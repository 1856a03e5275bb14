from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from customer_auth.logging import get_logger
from customer_auth.service.common import (
    DEFAULT_STORE_TIMEOUT,
    Clock,
    bounded,
    key_lock,
    utcnow,
)
from customer_auth.storage.ephemeral import LOGIN_STATUS, EphemeralStore
from customer_auth.storage.models import LoginStatus

logger = get_logger(__name__)


class LockoutState(str, Enum):
    CLEAR = "clear"
    WARNED = "warned"
    BLOCKED = "blocked"


class LockoutOutcome(str, Enum):
    ALLOWED = "allowed"
    STILL_BLOCKED = "still_blocked"
    CLEARED = "cleared"
    FAILED = "failed"
    NOW_BLOCKED = "now_blocked"


@dataclass(frozen=True)
class LockoutDecision:
    outcome: LockoutOutcome
    seconds_remaining: int = 0

    @property
    def blocked(self) -> bool:
        return self.outcome in (LockoutOutcome.STILL_BLOCKED, LockoutOutcome.NOW_BLOCKED)


class LockoutPolicy:
    """Escalating lockout for failed logins, tracked per phone number.

    After a failure the customer gets a safe-retry window that shrinks as time
    passes since the previous failure. Failing again inside that window blocks
    the phone for ``block_seconds``, counted from the blocking attempt. A
    block that has run out is forgotten on the next access: the last attempt
    is cleared along with the flag, so the next failure starts over.

    Only this class writes the ``customer_login`` hash.
    """

    def __init__(
        self,
        store: EphemeralStore,
        *,
        block_seconds: int = 60,
        clock: Optional[Clock] = None,
        timeout: float = DEFAULT_STORE_TIMEOUT,
    ) -> None:
        self.store = store
        self.block_seconds = block_seconds
        self._now = clock or utcnow
        self.timeout = timeout

    async def _load(self, phone: str) -> Optional[LoginStatus]:
        raw = await bounded(
            self.store.hget(LOGIN_STATUS, phone), self.timeout, operation="login_status_read"
        )
        return LoginStatus.loads(raw) if raw else None

    def _unblock_at(self, status: LoginStatus) -> Optional[datetime]:
        if not status.is_blocked or status.last_login_attempt is None:
            return None
        return status.last_login_attempt + timedelta(seconds=self.block_seconds)

    def _active_block(self, status: LoginStatus, now: datetime) -> Optional[int]:
        """Seconds left on an unexpired block, else None."""
        unblock_at = self._unblock_at(status)
        if unblock_at is None or now >= unblock_at:
            return None
        return max(1, math.ceil((unblock_at - now).total_seconds()))

    @staticmethod
    def _reset_expired_block(status: LoginStatus) -> None:
        if status.is_blocked:
            status.last_login_attempt = None
            status.is_blocked = False

    async def state(self, phone: str) -> LockoutState:
        status = await self._load(phone)
        if status is None:
            return LockoutState.CLEAR
        if self._active_block(status, self._now()) is not None:
            return LockoutState.BLOCKED
        return LockoutState.WARNED

    async def check(self, phone: str) -> LockoutDecision:
        """Gate consulted before any credential is evaluated."""
        status = await self._load(phone)
        if status is not None:
            remaining = self._active_block(status, self._now())
            if remaining is not None:
                logger.info("login_rejected_blocked", phone=phone, seconds_remaining=remaining)
                return LockoutDecision(LockoutOutcome.STILL_BLOCKED, remaining)
        return LockoutDecision(LockoutOutcome.ALLOWED)

    async def record_outcome(self, phone: str, succeeded: bool) -> LockoutDecision:
        async with key_lock(self.store, LOGIN_STATUS, phone):
            if succeeded:
                await bounded(
                    self.store.hdel(LOGIN_STATUS, phone),
                    self.timeout,
                    operation="login_status_delete",
                )
                return LockoutDecision(LockoutOutcome.CLEARED)

            now = self._now()
            status = await self._load(phone) or LoginStatus()
            remaining = self._active_block(status, now)
            if remaining is not None:
                # A concurrent attempt blocked this phone after our gate check
                return LockoutDecision(LockoutOutcome.STILL_BLOCKED, remaining)
            self._reset_expired_block(status)

            last = status.last_login_attempt
            if last is not None and now < last + timedelta(seconds=status.safe_login_after):
                status.is_blocked = True
                status.safe_login_after = 0
            elif last is not None:
                elapsed = int((now - last).total_seconds())
                status.safe_login_after = max(self.block_seconds - elapsed, 0)
            else:
                status.safe_login_after = 0
            status.last_login_attempt = now

            await bounded(
                self.store.hset(LOGIN_STATUS, phone, status.dumps()),
                self.timeout,
                operation="login_status_write",
            )

        if status.is_blocked:
            logger.warning("customer_blocked", phone=phone, block_seconds=self.block_seconds)
            return LockoutDecision(LockoutOutcome.NOW_BLOCKED, self.block_seconds)
        logger.info(
            "login_failure_recorded",
            phone=phone,
            safe_login_after=status.safe_login_after,
        )
        return LockoutDecision(LockoutOutcome.FAILED)
