from __future__ import annotations

import re
import unicodedata
from datetime import date, datetime
from typing import Any, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from customer_auth.service.customers import SUPPORTED_LANGUAGES

_PHONE_DIGITS = re.compile(r"^\d{7,15}$")
_ALNUM = re.compile(r"^[A-Za-z0-9]+$")
BIRTH_DATE_FORMAT = "%d/%m/%Y"


def _normalize_unicode(value: str) -> str:
    """Strip zero-width and bidi override characters, then NFKC normalize."""
    zero_width = "\u200b\u200c\u200d\ufeff"
    cleaned = "".join(c for c in value if c not in zero_width)

    bidi_overrides = set(chr(c) for c in range(0x202A, 0x202F))
    bidi_overrides.update(chr(c) for c in range(0x2066, 0x206A))
    cleaned = "".join(c for c in cleaned if c not in bidi_overrides)

    return unicodedata.normalize("NFKC", cleaned)


_VALID_ERROR_CODES = frozenset({
    "validation_error",
    "unauthorized",
    "wrong_password",
    "wrong_otp",
    "expired_otp",
    "user_not_found",
    "number_taken",
    "user_blocked",
    "asset_error",
    "forbidden",
    "not_found",
    "conflict",
    "server_error",
})


class ErrorBody(BaseModel):
    """Error envelope body with a stable ``code`` clients branch on."""

    code: str
    message: str
    details: Optional[Any] = None

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


class Envelope(BaseModel):
    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=lambda: str(uuid4()))


def _digits_from_number(value: Any) -> Any:
    """Clients may send the phone or code as a JSON number; take its decimal digits."""
    if isinstance(value, int) and not isinstance(value, bool):
        return str(abs(value))
    return value


def validate_phone(value: str) -> str:
    """Normalize a phone number to its digits, accepting one leading ``+``."""
    if not isinstance(value, str):
        raise ValueError("phone must be a string")
    normalized = _normalize_unicode(value.strip())
    if normalized.startswith("+"):
        normalized = normalized[1:]
    if not _PHONE_DIGITS.match(normalized):
        raise ValueError("phone must contain 7 to 15 digits")
    return normalized


def validate_name(value: str) -> str:
    normalized = _normalize_unicode(value.strip())
    if not 3 <= len(normalized) <= 64:
        raise ValueError("name must be between 3 and 64 characters")
    return normalized


def validate_password(value: str) -> str:
    """Passwords are at least 6 characters, letters and digits only."""
    stripped = value.strip()
    if len(stripped) < 6:
        raise ValueError("password must be at least 6 characters")
    if not _ALNUM.match(stripped):
        raise ValueError("password must contain only letters and digits")
    return stripped


def parse_birth_date(value: Optional[str]) -> Optional[date]:
    """Parse ``DD/MM/YYYY``. Whether the date lies in the past is checked by the service."""
    if value is None or not value.strip():
        return None
    try:
        return datetime.strptime(value.strip(), BIRTH_DATE_FORMAT).date()
    except ValueError as exc:
        raise ValueError("birthDate must use DD/MM/YYYY") from exc


def parse_gender(value: Optional[str]) -> Optional[str]:
    if value is None or not value.strip():
        return None
    normalized = value.strip().upper()
    if normalized not in ("M", "F"):
        raise ValueError("gender must be M or F")
    return normalized


class RegisterRequest(BaseModel):
    name: str
    phone: str
    password: str
    trust: bool = False

    @field_validator("name")
    @classmethod
    def _validate_name(cls, value: str) -> str:
        return validate_name(value)

    @field_validator("phone", mode="before")
    @classmethod
    def _phone_from_number(cls, value: Any) -> Any:
        return _digits_from_number(value)

    @field_validator("phone")
    @classmethod
    def _validate_phone(cls, value: str) -> str:
        return validate_phone(value)

    @field_validator("password")
    @classmethod
    def _validate_password(cls, value: str) -> str:
        return validate_password(value)


class LoginMethodRequest(BaseModel):
    phone: str

    @field_validator("phone", mode="before")
    @classmethod
    def _phone_from_number(cls, value: Any) -> Any:
        return _digits_from_number(value)

    @field_validator("phone")
    @classmethod
    def _validate_phone(cls, value: str) -> str:
        return validate_phone(value)


class LoginRequest(BaseModel):
    phone: str
    password: Optional[str] = Field(default=None, max_length=128)
    otp: Optional[str] = Field(default=None, max_length=10)
    trust: bool = False

    @field_validator("phone", mode="before")
    @classmethod
    def _phone_from_number(cls, value: Any) -> Any:
        return _digits_from_number(value)

    @field_validator("phone")
    @classmethod
    def _validate_phone(cls, value: str) -> str:
        return validate_phone(value)

    @field_validator("otp", mode="before")
    @classmethod
    def _otp_from_number(cls, value: Any) -> Any:
        return _digits_from_number(value)

    @field_validator("password", "otp")
    @classmethod
    def _strip_blank(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        stripped = value.strip()
        return stripped or None


class LangRequest(BaseModel):
    lang: str

    @field_validator("lang")
    @classmethod
    def _validate_lang(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in SUPPORTED_LANGUAGES:
            raise ValueError(f"lang must be one of {', '.join(SUPPORTED_LANGUAGES)}")
        return normalized


class SavedServiceRequest(BaseModel):
    service_id: str = Field(..., alias="serviceId", min_length=1, max_length=128)

    model_config = ConfigDict(populate_by_name=True)


class TokenResponse(BaseModel):
    token: str


class LoginMethodResponse(BaseModel):
    password: bool
    otp: bool
    method: str


class ProfileResponse(BaseModel):
    id: str
    phone: str
    name: str
    gender: Optional[str] = None
    birth_date: Optional[date] = None
    image_url: Optional[str] = None
    lang: str
    created_at: datetime
    saved_services: List[str] = Field(default_factory=list)


class SavedServicesResponse(BaseModel):
    saved_services: List[str]
