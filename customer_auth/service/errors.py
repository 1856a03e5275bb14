from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each subclass carries an HTTP ``status_code`` and a stable ``error_code``
    that clients branch on:
    - validation_error (400)
    - unauthorized / wrong_password / wrong_otp / expired_otp (401)
    - user_not_found (404)
    - number_taken (409)
    - user_blocked (429)
    - asset_error (400/500)
    - server_error (500/503)
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationFailed(ServiceError):
    """Malformed input; ``detail`` maps field names to reasons (400)."""
    status_code = 400
    error_code = "validation_error"


class AuthenticationError(ServiceError):
    """Missing, expired or foreign bearer token (401)."""
    status_code = 401
    error_code = "unauthorized"


class WrongPassword(AuthenticationError):
    error_code = "wrong_password"

    def __init__(self, message: str = "wrong password") -> None:
        super().__init__(message)


class WrongOtp(AuthenticationError):
    error_code = "wrong_otp"

    def __init__(self, message: str = "wrong one-time code") -> None:
        super().__init__(message)


class ExpiredOtp(AuthenticationError):
    error_code = "expired_otp"

    def __init__(self, message: str = "one-time code expired") -> None:
        super().__init__(message)


class IdentityNotFound(ServiceError):
    """No customer matches the given phone or id (404)."""
    status_code = 404
    error_code = "user_not_found"

    def __init__(self, message: str = "customer not found") -> None:
        super().__init__(message)


class AlreadyRegistered(ServiceError):
    """Phone number is already taken (409)."""
    status_code = 409
    error_code = "number_taken"

    def __init__(self, message: str = "phone number already registered") -> None:
        super().__init__(message, detail={"field": "phone"})


class UserBlocked(ServiceError):
    """Login attempts are rejected until the block window passes (429)."""
    status_code = 429
    error_code = "user_blocked"

    def __init__(self, seconds_remaining: int) -> None:
        super().__init__(
            "too many failed login attempts",
            detail={"time_left": seconds_remaining},
        )
        self.seconds_remaining = seconds_remaining


class AssetOperationFailed(ServiceError):
    """Uploading or deleting a stored image failed."""
    status_code = 500
    error_code = "asset_error"

    def __init__(
        self, message: str, *, operation: str, status_code: Optional[int] = None
    ) -> None:
        super().__init__(message, status_code=status_code, detail={"operation": operation})
        self.operation = operation


class ServerError(ServiceError):
    """Internal server error (500)."""
    status_code = 500
    error_code = "server_error"


class ServiceUnavailable(ServerError):
    """A backing store did not answer in time (503)."""
    status_code = 503


__all__ = [
    "ServiceError",
    "ValidationFailed",
    "AuthenticationError",
    "WrongPassword",
    "WrongOtp",
    "ExpiredOtp",
    "IdentityNotFound",
    "AlreadyRegistered",
    "UserBlocked",
    "AssetOperationFailed",
    "ServerError",
    "ServiceUnavailable",
]
