from __future__ import annotations

from typing import Any, Dict, Optional


class ConstraintViolation(Exception):
    """Raised when a storage-layer uniqueness constraint is violated."""

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class UnknownFieldError(ValueError):
    """Raised when an update or query names a field the record does not have."""

    def __init__(self, field_name: str):
        super().__init__(f"unknown field: {field_name}")
        self.field_name = field_name


__all__ = ["ConstraintViolation", "UnknownFieldError"]
