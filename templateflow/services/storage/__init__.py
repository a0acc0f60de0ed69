"""Object store integration."""

from __future__ import annotations

from templateflow.config import StoreSettings
from templateflow.core.errors import ConfigError

from .base import ObjectStore
from .local import LocalObjectStore
from .models import (
    CompletedPart,
    MultipartUpload,
    ObjectInfo,
    StoreAuthError,
    StoreError,
    StoreNotFound,
    StoreRequestError,
    StoreRetryableError,
    StoreTimeoutError,
)
from .remote import HttpObjectStore


def store_from_settings(settings: StoreSettings) -> ObjectStore:
    """Build the configured object store (HTTP gateway or local directory)."""

    if settings.base_url:
        return HttpObjectStore(settings)
    if settings.root is not None:
        return LocalObjectStore(settings.root)
    raise ConfigError("No object store configured: set store.base_url or store.root")


__all__ = [
    "ObjectStore",
    "LocalObjectStore",
    "HttpObjectStore",
    "ObjectInfo",
    "MultipartUpload",
    "CompletedPart",
    "StoreError",
    "StoreAuthError",
    "StoreNotFound",
    "StoreRetryableError",
    "StoreRequestError",
    "StoreTimeoutError",
    "store_from_settings",
]
