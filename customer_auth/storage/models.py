from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_epoch_ms(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


def from_epoch_ms(value: int | float) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


@dataclass
class Customer:
    id: str
    phone: str
    name: str
    hashed_password: str
    gender: Optional[str] = None
    birth_date: Optional[date] = None
    image_url: Optional[str] = None
    lang: str = "en"
    created_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def new(cls, name: str, phone: str, hashed_password: str) -> "Customer":
        return cls(
            id=str(uuid.uuid4()),
            phone=phone,
            name=name,
            hashed_password=hashed_password,
        )


@dataclass
class TrustedDevice:
    customer_id: str
    device_id: str
    created_at: datetime = field(default_factory=_utcnow)


@dataclass
class SessionRecord:
    """Value stored in the ``tokens`` hash for one bearer token."""

    customer_id: str
    role: str
    expires_at: datetime

    def dumps(self) -> str:
        return json.dumps(
            {
                "id": self.customer_id,
                "role": self.role,
                "expiresAt": to_epoch_ms(self.expires_at),
            }
        )

    @classmethod
    def loads(cls, raw: str) -> "SessionRecord":
        payload = json.loads(raw)
        return cls(
            customer_id=str(payload["id"]),
            role=payload["role"],
            expires_at=from_epoch_ms(payload["expiresAt"]),
        )


@dataclass
class OneTimeCode:
    """Value stored in the ``otp`` hash, keyed by phone."""

    code: int
    expires_at: datetime

    def dumps(self) -> str:
        return json.dumps({"code": self.code, "expiresAt": to_epoch_ms(self.expires_at)})

    @classmethod
    def loads(cls, raw: str) -> "OneTimeCode":
        payload = json.loads(raw)
        return cls(code=int(payload["code"]), expires_at=from_epoch_ms(payload["expiresAt"]))


@dataclass
class LoginStatus:
    """Failed-attempt history for one phone, stored in ``customer_login``."""

    last_login_attempt: Optional[datetime] = None
    safe_login_after: int = 0
    is_blocked: bool = False

    def dumps(self) -> str:
        last = self.last_login_attempt.isoformat() if self.last_login_attempt else None
        return json.dumps(
            {
                "last_login_attempt": last,
                "safe_login_after": self.safe_login_after,
                "is_blocked": self.is_blocked,
            }
        )

    @classmethod
    def loads(cls, raw: str) -> "LoginStatus":
        payload = json.loads(raw)
        last_raw = payload.get("last_login_attempt")
        last: Optional[datetime] = None
        if isinstance(last_raw, (int, float)):
            last = from_epoch_ms(last_raw)
        elif last_raw:
            last = datetime.fromisoformat(last_raw)
            if last.tzinfo is None:
                last = last.replace(tzinfo=timezone.utc)
        return cls(
            last_login_attempt=last,
            safe_login_after=int(payload.get("safe_login_after") or 0),
            is_blocked=bool(payload.get("is_blocked", False)),
        )
