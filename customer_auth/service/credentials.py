from __future__ import annotations

import secrets
from typing import Protocol

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

from customer_auth.logging import get_logger

logger = get_logger(__name__)


class CredentialHasher(Protocol):
    def hash(self, password: str) -> str: ...

    def verify(self, hashed: str, password: str) -> bool: ...


class CodeGenerator(Protocol):
    def generate(self) -> int: ...


class Argon2CredentialHasher:
    """argon2id password hashing."""

    def __init__(self, hasher: PasswordHasher | None = None) -> None:
        self._pwd_hasher = hasher or PasswordHasher(type=Type.ID)

    def hash(self, password: str) -> str:
        return self._pwd_hasher.hash(password)

    def verify(self, hashed: str, password: str) -> bool:
        try:
            return self._pwd_hasher.verify(hashed, password)
        except VerifyMismatchError:
            return False
        except (InvalidHash, VerificationError):
            logger.warning("password_hash_unusable")
            return False


class SecretsCodeGenerator:
    """Uniform six-digit codes from the OS CSPRNG."""

    LOW = 100000
    HIGH = 999999

    def generate(self) -> int:
        return self.LOW + secrets.randbelow(self.HIGH - self.LOW + 1)
