"""Cache entry models and their on-disk metadata format."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from templateflow.core.errors import CacheCorruptionError
from templateflow.services.storage.keys import sanitize_name

CONTENT_SUFFIX = ".cache"
META_SUFFIX = ".meta.json"
IDENTITY_SEPARATOR = "__"


def ensure_aware(value: datetime) -> datetime:
    """Treat naive timestamps as UTC so comparisons never mix kinds."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True, slots=True)
class TemplateDescriptor:
    """The current remote version of a template."""

    category: str
    key: str
    object_key: str
    original_file_name: str
    last_modified: datetime


@dataclass(slots=True)
class CacheEntry:
    """Template bytes plus the facts needed to decide freshness."""

    content: bytes
    file_name: str
    file_extension: str
    cached_at: int
    source_last_modified: datetime
    from_cache: bool = field(default=False, compare=False)

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass(frozen=True, slots=True)
class CacheStats:
    total_files: int
    total_size: int
    entries: int = 0


@dataclass(frozen=True, slots=True)
class CacheMetadata:
    """Sidecar JSON written next to every cached template."""

    file_name: str
    file_extension: str
    last_modified: datetime
    cached_at: int
    size: int
    object_key: str = ""

    def is_fresh(self, now_ms: int, ttl_ms: int, remote_last_modified: datetime) -> bool:
        if now_ms - self.cached_at >= ttl_ms:
            return False
        return ensure_aware(self.last_modified) >= ensure_aware(remote_last_modified)

    def is_expired(self, now_ms: int, ttl_ms: int) -> bool:
        return now_ms - self.cached_at >= ttl_ms

    def to_json(self) -> bytes:
        payload = {
            "fileName": self.file_name,
            "fileExtension": self.file_extension,
            "lastModified": ensure_aware(self.last_modified).isoformat(),
            "cachedAt": self.cached_at,
            "size": self.size,
            "objectKey": self.object_key,
        }
        return json.dumps(payload, ensure_ascii=False, indent=2).encode("utf-8")

    @classmethod
    def from_json(cls, raw: bytes | str) -> "CacheMetadata":
        try:
            payload: Any = json.loads(raw)
        except (ValueError, UnicodeDecodeError) as exc:
            raise CacheCorruptionError(f"Unreadable cache metadata: {exc}") from exc
        if not isinstance(payload, dict):
            raise CacheCorruptionError("Cache metadata is not a JSON object")
        try:
            return cls(
                file_name=str(payload["fileName"]),
                file_extension=str(payload["fileExtension"]),
                last_modified=ensure_aware(datetime.fromisoformat(str(payload["lastModified"]))),
                cached_at=int(payload["cachedAt"]),
                size=int(payload["size"]),
                object_key=str(payload.get("objectKey") or ""),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise CacheCorruptionError(f"Invalid cache metadata field: {exc}") from exc


def cache_identity(category: str, key: str, object_key: str) -> str:
    """Filesystem-safe identity for a template version.

    ``<category>__<key>__<sha1(object_key)[:12]>``; sanitized names never
    contain ``__`` so the category prefix is unambiguous.
    """

    digest = hashlib.sha1(object_key.encode("utf-8")).hexdigest()[:12]
    return IDENTITY_SEPARATOR.join((sanitize_name(category), sanitize_name(key), digest))


def category_prefix(category: str) -> str:
    return f"{sanitize_name(category)}{IDENTITY_SEPARATOR}"


__all__ = [
    "CONTENT_SUFFIX",
    "META_SUFFIX",
    "TemplateDescriptor",
    "CacheEntry",
    "CacheStats",
    "CacheMetadata",
    "cache_identity",
    "category_prefix",
    "ensure_aware",
]
