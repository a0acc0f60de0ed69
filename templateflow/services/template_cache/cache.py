"""Disk cache that mirrors versioned templates held in the object store."""

from __future__ import annotations

import logging
import os
import time
import uuid
from datetime import timedelta
from pathlib import Path, PurePosixPath
from typing import Callable, Iterator

from templateflow.config import DEFAULT_CHUNK_SIZE, DEFAULT_TEMPLATE_PREFIX, CacheSettings
from templateflow.core.errors import CacheCorruptionError, FetchError, FetchTimeoutError, NotFoundError
from templateflow.core.logger import get_logger
from templateflow.services.storage.base import ObjectStore
from templateflow.services.storage.keys import ORIGINAL_NAME_METADATA, decode_original_name, template_prefix
from templateflow.services.storage.models import ObjectInfo, StoreError, StoreNotFound, StoreTimeoutError
from templateflow_io.content_types import DEFAULT_TEMPLATE_EXTENSION, file_extension

from .entry import (
    CONTENT_SUFFIX,
    META_SUFFIX,
    CacheEntry,
    CacheMetadata,
    CacheStats,
    TemplateDescriptor,
    cache_identity,
    category_prefix,
    ensure_aware,
)

LOGGER = get_logger()


def _atomic_write(path: Path, data: bytes) -> None:
    tmp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
    try:
        with tmp_path.open("wb") as handle:
            handle.write(data)
        os.replace(tmp_path, path)
    finally:
        tmp_path.unlink(missing_ok=True)


class TemplateCache:
    """Serve template bytes from disk while they match the remote version.

    An entry is reused while it is younger than ``ttl`` and the remote
    object has not been modified since it was fetched. Every call still
    lists the store to find the current version; only the content read is
    skipped on a hit.
    """

    def __init__(
        self,
        store: ObjectStore,
        root: str | os.PathLike[str],
        *,
        ttl: timedelta = timedelta(hours=24),
        clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
        prefix: str = DEFAULT_TEMPLATE_PREFIX,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        logger: logging.Logger | None = None,
    ) -> None:
        if ttl <= timedelta(0):
            raise ValueError("ttl must be positive")
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self._store = store
        self._root = Path(root).expanduser()
        self._root.mkdir(parents=True, exist_ok=True)
        self._ttl_ms = int(ttl.total_seconds() * 1000)
        self._clock = clock
        self._monotonic = monotonic
        self._prefix = prefix
        self._chunk_size = chunk_size
        self._logger = logger or LOGGER

    @classmethod
    def from_settings(
        cls,
        store: ObjectStore,
        settings: CacheSettings,
        *,
        logger: logging.Logger | None = None,
    ) -> "TemplateCache":
        return cls(
            store,
            settings.resolved_directory(),
            ttl=timedelta(seconds=settings.ttl_seconds),
            prefix=settings.prefix,
            chunk_size=settings.chunk_size,
            logger=logger,
        )

    @property
    def root(self) -> Path:
        return self._root

    def content_path(self, identity: str) -> Path:
        return self._root / f"{identity}{CONTENT_SUFFIX}"

    def meta_path(self, identity: str) -> Path:
        return self._root / f"{identity}{META_SUFFIX}"

    def get_template(self, category: str, key: str, *, timeout: float | None = None) -> CacheEntry:
        """Return the current template for ``category``/``key``.

        Raises:
            NotFoundError: No template object exists under the category/key.
            FetchTimeoutError: Listing and content read did not finish within ``timeout``.
            FetchError: Listing or reading the store failed.
        """

        expires = None if timeout is None else self._monotonic() + timeout
        descriptor = self.resolve_descriptor(category, key, timeout=timeout)
        identity = cache_identity(category, key, descriptor.object_key)

        try:
            cached = self._read_valid(identity, descriptor)
        except CacheCorruptionError as exc:
            self._logger.warning("template_cache.corrupt identity=%s error=%s", identity, exc)
            cached = None
        if cached is not None:
            self._logger.info("template_cache.hit category=%s key=%s identity=%s", category, key, identity)
            return cached

        self._logger.info(
            "template_cache.miss category=%s key=%s object=%s", category, key, descriptor.object_key
        )
        content = self._fetch(descriptor, expires)
        entry = CacheEntry(
            content=content,
            file_name=descriptor.original_file_name,
            file_extension=file_extension(descriptor.original_file_name, DEFAULT_TEMPLATE_EXTENSION),
            cached_at=self._now_ms(),
            source_last_modified=ensure_aware(descriptor.last_modified),
            from_cache=False,
        )
        self._write_entry(identity, descriptor, entry)
        return entry

    def resolve_descriptor(self, category: str, key: str, *, timeout: float | None = None) -> TemplateDescriptor:
        """Find the newest object stored under the template's prefix."""

        listing_prefix = template_prefix(self._prefix, category, key)
        if timeout is not None and timeout <= 0:
            raise FetchTimeoutError(f"No time left to list {listing_prefix}")
        try:
            objects = self._store.list(listing_prefix, timeout=timeout)
        except StoreNotFound:
            objects = []
        except StoreTimeoutError as exc:
            self._logger.warning("template_cache.list_timeout prefix=%s", listing_prefix)
            raise FetchTimeoutError(f"Timed out listing {listing_prefix}") from exc
        except StoreError as exc:
            self._logger.error(
                "template_cache.list_failed prefix=%s classification=%s", listing_prefix, exc.classification
            )
            raise FetchError(f"Unable to list templates under {listing_prefix}: {exc}", classification=exc.classification) from exc

        candidates = [item for item in objects if item.key.startswith(listing_prefix) and not item.key.endswith("/")]
        if not candidates:
            raise NotFoundError(
                f"No template found for category={category} key={key}", category=category, key=key
            )
        newest = max(candidates, key=lambda item: (ensure_aware(item.last_modified), item.key))
        return TemplateDescriptor(
            category=category,
            key=key,
            object_key=newest.key,
            original_file_name=_original_name(newest),
            last_modified=ensure_aware(newest.last_modified),
        )

    def clear(self, category: str | None = None) -> int:
        """Delete cached files, optionally only those of ``category``."""

        prefix = category_prefix(category) if category else ""
        removed = 0
        for path in self._iter_cache_files():
            if prefix and not path.name.startswith(prefix):
                continue
            path.unlink(missing_ok=True)
            removed += 1
        self._logger.info("template_cache.clear category=%s removed=%d", category or "*", removed)
        return removed

    def stats(self) -> CacheStats:
        total_files = 0
        total_size = 0
        entries = 0
        for path in self._iter_cache_files():
            total_files += 1
            total_size += path.stat().st_size
            if path.name.endswith(CONTENT_SUFFIX):
                entries += 1
        return CacheStats(total_files=total_files, total_size=total_size, entries=entries)

    def purge_expired(self) -> int:
        """Remove entries past their TTL, unreadable entries and orphans."""

        now_ms = self._now_ms()
        removed = 0
        identities = {self._identity_of(path) for path in self._iter_cache_files()}
        for identity in sorted(identities):
            meta_path = self.meta_path(identity)
            expired = True
            if meta_path.is_file() and self.content_path(identity).is_file():
                try:
                    metadata = CacheMetadata.from_json(meta_path.read_bytes())
                    expired = metadata.is_expired(now_ms, self._ttl_ms)
                except (OSError, CacheCorruptionError):
                    expired = True
            if expired:
                self.content_path(identity).unlink(missing_ok=True)
                meta_path.unlink(missing_ok=True)
                removed += 1
        self._logger.info("template_cache.purge removed=%d", removed)
        return removed

    # Internal helpers -------------------------------------------------

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _iter_cache_files(self) -> Iterator[Path]:
        if not self._root.is_dir():
            return
        for path in sorted(self._root.iterdir()):
            if not path.is_file() or path.name.startswith("."):
                continue
            if path.name.endswith(CONTENT_SUFFIX) or path.name.endswith(META_SUFFIX):
                yield path

    @staticmethod
    def _identity_of(path: Path) -> str:
        name = path.name
        for suffix in (META_SUFFIX, CONTENT_SUFFIX):
            if name.endswith(suffix):
                return name[: -len(suffix)]
        return name

    def _read_valid(self, identity: str, descriptor: TemplateDescriptor) -> CacheEntry | None:
        meta_path = self.meta_path(identity)
        if not meta_path.is_file():
            return None
        try:
            metadata = CacheMetadata.from_json(meta_path.read_bytes())
        except OSError as exc:
            raise CacheCorruptionError(f"Cannot read {meta_path.name}: {exc}") from exc
        if not metadata.is_fresh(self._now_ms(), self._ttl_ms, descriptor.last_modified):
            self._logger.info("template_cache.stale identity=%s", identity)
            return None
        content_path = self.content_path(identity)
        try:
            content = content_path.read_bytes()
        except OSError as exc:
            raise CacheCorruptionError(f"Cannot read {content_path.name}: {exc}") from exc
        if len(content) != metadata.size:
            raise CacheCorruptionError(
                f"Size mismatch for {content_path.name}: expected {metadata.size}, found {len(content)}"
            )
        return CacheEntry(
            content=content,
            file_name=metadata.file_name,
            file_extension=metadata.file_extension,
            cached_at=metadata.cached_at,
            source_last_modified=metadata.last_modified,
            from_cache=True,
        )

    def _fetch(self, descriptor: TemplateDescriptor, expires: float | None) -> bytes:
        budget = self._remaining(expires, descriptor.object_key)
        buffer = bytearray()
        chunks = None
        try:
            chunks = self._store.iter_content(descriptor.object_key, chunk_size=self._chunk_size, timeout=budget)
            for chunk in chunks:
                buffer.extend(chunk)
                if expires is not None and self._monotonic() >= expires:
                    self._logger.warning(
                        "template_cache.fetch_timeout object=%s read=%d", descriptor.object_key, len(buffer)
                    )
                    raise FetchTimeoutError(f"Timed out fetching {descriptor.object_key}")
        except StoreNotFound as exc:
            raise NotFoundError(
                f"Template object disappeared: {descriptor.object_key}",
                category=descriptor.category,
                key=descriptor.key,
            ) from exc
        except StoreTimeoutError as exc:
            self._logger.warning("template_cache.fetch_timeout object=%s read=%d", descriptor.object_key, len(buffer))
            raise FetchTimeoutError(f"Timed out fetching {descriptor.object_key}") from exc
        except StoreError as exc:
            self._logger.error(
                "template_cache.fetch_failed object=%s classification=%s", descriptor.object_key, exc.classification
            )
            raise FetchError(f"Unable to fetch {descriptor.object_key}: {exc}", classification=exc.classification) from exc
        finally:
            close = getattr(chunks, "close", None)
            if close is not None:
                close()
        return bytes(buffer)

    def _remaining(self, expires: float | None, object_key: str) -> float | None:
        if expires is None:
            return None
        remaining = expires - self._monotonic()
        if remaining <= 0:
            self._logger.warning("template_cache.fetch_timeout object=%s read=0", object_key)
            raise FetchTimeoutError(f"Deadline passed before fetching {object_key}")
        return remaining

    def _write_entry(self, identity: str, descriptor: TemplateDescriptor, entry: CacheEntry) -> None:
        content_path = self.content_path(identity)
        meta_path = self.meta_path(identity)
        metadata = CacheMetadata(
            file_name=entry.file_name,
            file_extension=entry.file_extension,
            last_modified=entry.source_last_modified,
            cached_at=entry.cached_at,
            size=entry.size,
            object_key=descriptor.object_key,
        )
        try:
            self._root.mkdir(parents=True, exist_ok=True)
            meta_path.unlink(missing_ok=True)
            _atomic_write(content_path, entry.content)
        except OSError as exc:
            self._logger.error("template_cache.write_failed identity=%s error=%s", identity, exc)
            return
        try:
            _atomic_write(meta_path, metadata.to_json())
        except OSError as exc:
            self._logger.error("template_cache.meta_write_failed identity=%s error=%s", identity, exc)
            return
        self._logger.info("template_cache.stored identity=%s size=%d", identity, entry.size)


def _original_name(info: ObjectInfo) -> str:
    decoded = decode_original_name(info.metadata.get(ORIGINAL_NAME_METADATA))
    if decoded:
        return decoded
    return PurePosixPath(info.key).name


__all__ = ["TemplateCache"]
