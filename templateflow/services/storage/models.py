"""Domain models and exceptions for object store integration."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


class StoreError(RuntimeError):
    """Base error raised for object store failures."""

    classification = "unknown"

    def __init__(self, message: str, *, status_code: int | None = None, payload: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload or {}


class StoreAuthError(StoreError):
    """Raised when the store rejects credentials or permissions."""

    classification = "permission"


class StoreNotFound(StoreError):
    """Raised when the requested object cannot be located."""

    classification = "not_found"


class StoreRetryableError(StoreError):
    """Raised for retryable I/O issues (network/server errors)."""

    classification = "retryable"


class StoreTimeoutError(StoreRetryableError):
    """Raised when a caller deadline runs out before the store answered."""

    classification = "timeout"


class StoreRequestError(StoreError):
    """Raised for non-retryable HTTP or protocol errors."""


@dataclass(slots=True)
class ObjectInfo:
    """Stat-like view of a stored object."""

    key: str
    size: int
    last_modified: datetime
    metadata: dict[str, str] = field(default_factory=dict)
    content_type: str | None = None


@dataclass(slots=True)
class MultipartUpload:
    """Handle for an in-flight multipart upload."""

    key: str
    upload_id: str


@dataclass(slots=True)
class CompletedPart:
    part_number: int
    etag: str


__all__ = [
    "StoreError",
    "StoreAuthError",
    "StoreNotFound",
    "StoreRetryableError",
    "StoreRequestError",
    "StoreTimeoutError",
    "ObjectInfo",
    "MultipartUpload",
    "CompletedPart",
]
