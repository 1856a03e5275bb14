from __future__ import annotations

from datetime import timedelta
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
from customer_auth.service.credentials import CodeGenerator, SecretsCodeGenerator
from customer_auth.storage.ephemeral import OTP, EphemeralStore
from customer_auth.storage.models import OneTimeCode

logger = get_logger(__name__)


class OtpOutcome(str, Enum):
    VALID = "valid"
    INVALID = "invalid"
    EXPIRED = "expired"


class OtpService:
    """Issues and checks one-time login codes keyed by phone number.

    A phone holds at most one live code. Codes are consumed on a correct
    submission and dropped once found expired; a wrong submission leaves the
    code in place. The ``otp`` hash is written only from here.
    """

    def __init__(
        self,
        store: EphemeralStore,
        *,
        generator: Optional[CodeGenerator] = None,
        ttl_seconds: int = 120,
        clock: Optional[Clock] = None,
        timeout: float = DEFAULT_STORE_TIMEOUT,
    ) -> None:
        self.store = store
        self.generator = generator or SecretsCodeGenerator()
        self.ttl = timedelta(seconds=ttl_seconds)
        self._now = clock or utcnow
        self.timeout = timeout

    async def issue(self, phone: str) -> int:
        """Store a fresh code for ``phone``, replacing any earlier one.

        Returns the code; delivering it to the customer is the caller's job.
        """
        record = OneTimeCode(code=self.generator.generate(), expires_at=self._now() + self.ttl)
        async with key_lock(self.store, OTP, phone):
            await bounded(
                self.store.hset(OTP, phone, record.dumps()), self.timeout, operation="otp_write"
            )
        logger.info("otp_issued", phone=phone, expires_at=record.expires_at.isoformat())
        return record.code

    async def validate(self, phone: str, submitted: object) -> OtpOutcome:
        async with key_lock(self.store, OTP, phone):
            raw = await bounded(self.store.hget(OTP, phone), self.timeout, operation="otp_read")
            if not raw:
                return OtpOutcome.INVALID
            record = OneTimeCode.loads(raw)
            if record.expires_at <= self._now():
                await bounded(self.store.hdel(OTP, phone), self.timeout, operation="otp_delete")
                logger.info("otp_expired", phone=phone)
                return OtpOutcome.EXPIRED
            if _parse_code(submitted) != record.code:
                return OtpOutcome.INVALID
            await bounded(self.store.hdel(OTP, phone), self.timeout, operation="otp_delete")
        return OtpOutcome.VALID

    async def peek(self, phone: str) -> Optional[OneTimeCode]:
        raw = await bounded(self.store.hget(OTP, phone), self.timeout, operation="otp_read")
        return OneTimeCode.loads(raw) if raw else None


def _parse_code(submitted: object) -> Optional[int]:
    if isinstance(submitted, bool):
        return None
    if isinstance(submitted, int):
        return submitted
    try:
        return int(str(submitted).strip())
    except (TypeError, ValueError):
        return None
