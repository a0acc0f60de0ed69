"""Filesystem-backed object store.

Objects live under ``<root>/objects/<key>`` with a JSON sidecar under
``<root>/meta/<key>.json``. Multipart parts are staged in
``<root>/uploads/<upload_id>/`` and only become visible once completed.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import uuid
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Callable, Iterator, Mapping

from templateflow.core.logger import get_logger

from .models import CompletedPart, MultipartUpload, ObjectInfo, StoreNotFound, StoreRequestError

LOGGER = get_logger()

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _atomic_write(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
    with tmp_path.open("wb") as handle:
        handle.write(data)
    os.replace(tmp_path, path)


class LocalObjectStore:
    """Object store implementation on a local directory tree."""

    def __init__(
        self,
        root: str | os.PathLike[str],
        *,
        clock: Clock | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._root = Path(root).expanduser().resolve()
        self._objects = self._root / "objects"
        self._meta = self._root / "meta"
        self._uploads = self._root / "uploads"
        for directory in (self._objects, self._meta, self._uploads):
            directory.mkdir(parents=True, exist_ok=True)
        self._clock = clock or _utcnow
        self._logger = logger or LOGGER

    @property
    def root(self) -> Path:
        return self._root

    def put(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str | None = None,
        metadata: Mapping[str, str] | None = None,
    ) -> ObjectInfo:
        object_path = self._object_path(key)
        _atomic_write(object_path, bytes(data))
        info = ObjectInfo(
            key=key,
            size=len(data),
            last_modified=self._clock(),
            metadata=dict(metadata or {}),
            content_type=content_type,
        )
        self._write_meta(info)
        self._logger.info("storage.local put key=%s size=%d", key, info.size)
        return info

    def get(self, key: str) -> bytes:
        return b"".join(self.iter_content(key))

    def iter_content(
        self, key: str, *, chunk_size: int = 128 * 1024, timeout: float | None = None
    ) -> Iterator[bytes]:
        # disk reads do not block on a peer; timeout is accepted and ignored
        object_path = self._object_path(key)
        if not object_path.is_file():
            raise StoreNotFound(f"Object not found: {key}", status_code=404)
        with object_path.open("rb") as handle:
            while True:
                block = handle.read(chunk_size)
                if not block:
                    break
                yield block

    def head(self, key: str) -> ObjectInfo:
        object_path = self._object_path(key)
        if not object_path.is_file():
            raise StoreNotFound(f"Object not found: {key}", status_code=404)
        return self._read_meta(key, object_path)

    def list(self, prefix: str, *, timeout: float | None = None) -> list[ObjectInfo]:
        results: list[ObjectInfo] = []
        for path in sorted(self._objects.rglob("*")):
            if not path.is_file() or path.name.startswith("."):
                continue
            key = path.relative_to(self._objects).as_posix()
            if key.startswith(prefix):
                results.append(self._read_meta(key, path))
        return results

    def delete(self, key: str) -> None:
        object_path = self._object_path(key)
        if not object_path.is_file():
            raise StoreNotFound(f"Object not found: {key}", status_code=404)
        object_path.unlink()
        self._meta_path(key).unlink(missing_ok=True)

    def touch(self, key: str) -> ObjectInfo:
        """Bump the last-modified timestamp of an existing object."""

        info = self.head(key)
        info.last_modified = self._clock()
        self._write_meta(info)
        return info

    # Multipart -----------------------------------------------------------

    def create_multipart_upload(
        self,
        key: str,
        *,
        content_type: str | None = None,
        metadata: Mapping[str, str] | None = None,
    ) -> MultipartUpload:
        self._object_path(key)
        upload = MultipartUpload(key=key, upload_id=uuid.uuid4().hex)
        staging = self._uploads / upload.upload_id
        staging.mkdir(parents=True)
        manifest = {"key": key, "contentType": content_type, "metadata": dict(metadata or {})}
        (staging / "upload.json").write_text(json.dumps(manifest), encoding="utf-8")
        return upload

    def upload_part(self, upload: MultipartUpload, part_number: int, data: bytes) -> CompletedPart:
        staging = self._staging_dir(upload)
        _atomic_write(staging / f"{part_number:05d}.part", bytes(data))
        return CompletedPart(part_number=part_number, etag=f"{upload.upload_id}-{part_number}")

    def complete_multipart_upload(self, upload: MultipartUpload, parts: list[CompletedPart]) -> ObjectInfo:
        staging = self._staging_dir(upload)
        manifest = json.loads((staging / "upload.json").read_text(encoding="utf-8"))
        chunks: list[bytes] = []
        for part in sorted(parts, key=lambda item: item.part_number):
            part_path = staging / f"{part.part_number:05d}.part"
            if not part_path.is_file():
                raise StoreRequestError(
                    f"Missing part {part.part_number} for upload {upload.upload_id}",
                    payload={"key": upload.key},
                )
            chunks.append(part_path.read_bytes())
        info = self.put(
            upload.key,
            b"".join(chunks),
            content_type=manifest.get("contentType"),
            metadata=manifest.get("metadata") or {},
        )
        shutil.rmtree(staging, ignore_errors=True)
        return info

    def abort_multipart_upload(self, upload: MultipartUpload) -> None:
        shutil.rmtree(self._uploads / upload.upload_id, ignore_errors=True)
        self._logger.info("storage.local multipart_aborted key=%s upload_id=%s", upload.key, upload.upload_id)

    def pending_uploads(self) -> list[str]:
        return sorted(p.name for p in self._uploads.iterdir() if p.is_dir())

    # Internal helpers ----------------------------------------------------

    def _object_path(self, key: str) -> Path:
        return self._objects / self._safe_relative(key)

    def _meta_path(self, key: str) -> Path:
        relative = self._safe_relative(key)
        return self._meta / relative.with_name(relative.name + ".json")

    def _staging_dir(self, upload: MultipartUpload) -> Path:
        staging = self._uploads / upload.upload_id
        if not staging.is_dir():
            raise StoreNotFound(f"Unknown multipart upload: {upload.upload_id}", status_code=404)
        return staging

    def _safe_relative(self, key: str) -> Path:
        pure = PurePosixPath(key)
        if not key or pure.is_absolute() or any(part in ("", ".", "..") for part in pure.parts):
            raise StoreRequestError(f"Invalid object key: {key!r}", status_code=400)
        return Path(*pure.parts)

    def _write_meta(self, info: ObjectInfo) -> None:
        payload = {
            "size": info.size,
            "lastModified": info.last_modified.isoformat(),
            "metadata": info.metadata,
            "contentType": info.content_type,
        }
        _atomic_write(self._meta_path(info.key), json.dumps(payload).encode("utf-8"))

    def _read_meta(self, key: str, object_path: Path) -> ObjectInfo:
        meta_path = self._meta_path(key)
        try:
            payload = json.loads(meta_path.read_text(encoding="utf-8"))
            last_modified = datetime.fromisoformat(payload["lastModified"])
        except (OSError, ValueError, KeyError):
            stat = object_path.stat()
            return ObjectInfo(
                key=key,
                size=stat.st_size,
                last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            )
        return ObjectInfo(
            key=key,
            size=int(payload.get("size", object_path.stat().st_size)),
            last_modified=last_modified,
            metadata={str(k): str(v) for k, v in (payload.get("metadata") or {}).items()},
            content_type=payload.get("contentType"),
        )


__all__ = ["LocalObjectStore"]
