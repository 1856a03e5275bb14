from __future__ import annotations

from typing import Any, Dict, Optional


class ConstraintViolation(Exception):
    """Raised when a storage-layer uniqueness or FK constraint is violated."""

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class LockUnavailable(Exception):
    """Raised when a per-key lock cannot be acquired within its wait time."""

    def __init__(self, namespace: str, key: str):
        super().__init__(f"lock busy: {namespace}")
        self.namespace = namespace
        self.key = key


__all__ = ["ConstraintViolation", "LockUnavailable"]
