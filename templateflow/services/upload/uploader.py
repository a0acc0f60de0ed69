"""Chunked uploads to the object store driven by the adaptive planner."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Mapping

from templateflow.core.errors import UploadError, UploadTimeoutError
from templateflow.core.logger import get_logger
from templateflow.services.storage.base import ObjectStore
from templateflow.services.storage.keys import ORIGINAL_NAME_METADATA, build_object_key, encode_original_name
from templateflow.services.storage.models import (
    CompletedPart,
    MultipartUpload,
    ObjectInfo,
    StoreError,
    StoreRetryableError,
)
from templateflow_io.content_types import content_type_for, file_extension

from .planner import UploadPlan, iter_part_ranges, part_count, plan

LOGGER = get_logger()

Planner = Callable[[int, str | None], UploadPlan]


@dataclass(slots=True)
class UploadProgress:
    """Represents the current upload progress state."""

    filename: str
    total_bytes: int
    uploaded_bytes: int
    total_parts: int
    completed_parts: int
    state: str
    message: str | None = None


ProgressCallback = Callable[[UploadProgress], None]


class _Deadline:
    def __init__(self, timeout: float | None, clock: Callable[[], float]) -> None:
        self._clock = clock
        self._expires = None if timeout is None else clock() + timeout

    def remaining(self) -> float | None:
        if self._expires is None:
            return None
        return max(0.0, self._expires - self._clock())

    def expired(self) -> bool:
        return self._expires is not None and self._clock() >= self._expires


class ChunkedUploader:
    """Upload payloads as a single PUT or as parallel multipart parts."""

    def __init__(
        self,
        store: ObjectStore,
        *,
        planner: Planner = plan,
        max_part_attempts: int = 3,
        backoff_sec: float = 0.2,
        clock: Callable[[], float] = time.monotonic,
        logger: logging.Logger | None = None,
    ) -> None:
        self._store = store
        self._planner = planner
        self._max_part_attempts = max(1, max_part_attempts)
        self._backoff_sec = backoff_sec
        self._clock = clock
        self._logger = logger or LOGGER

    def upload(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str | None = None,
        metadata: Mapping[str, str] | None = None,
        quality_hint: str | None = None,
        timeout: float | None = None,
        progress_cb: ProgressCallback | None = None,
    ) -> ObjectInfo:
        """Upload ``data`` to ``key`` following the planner's strategy.

        Raises:
            UploadTimeoutError: The deadline passed; any multipart upload has
                been aborted so no partial object is visible.
            UploadError: The store rejected the transfer. ``classification``
                carries the store's error category.
        """

        deadline = _Deadline(timeout, self._clock)
        upload_plan = self._planner(len(data), quality_hint)
        self._logger.info(
            "upload.plan key=%s size=%d chunking=%s part_size=%d parallelism=%d hint=%s",
            key,
            len(data),
            upload_plan.use_chunking,
            upload_plan.part_size,
            upload_plan.parallelism,
            quality_hint,
        )
        if deadline.expired():
            raise UploadTimeoutError(f"Upload deadline exceeded before start: {key}")
        if not upload_plan.use_chunking:
            return self._upload_single(key, data, content_type, metadata, progress_cb)
        return self._upload_multipart(key, data, upload_plan, content_type, metadata, deadline, progress_cb)

    def publish_document(
        self,
        kind: str,
        category: str,
        original_name: str,
        data: bytes,
        *,
        subcategory: str | None = None,
        content_type: str | None = None,
        metadata: Mapping[str, str] | None = None,
        quality_hint: str | None = None,
        timeout: float | None = None,
        progress_cb: ProgressCallback | None = None,
        now: datetime | None = None,
    ) -> ObjectInfo:
        """Upload a generated document under the standard key layout."""

        key = build_object_key(kind, category, original_name, subcategory=subcategory, now=now)
        merged = dict(metadata or {})
        merged[ORIGINAL_NAME_METADATA] = encode_original_name(original_name)
        return self.upload(
            key,
            data,
            content_type=content_type or content_type_for(file_extension(original_name)),
            metadata=merged,
            quality_hint=quality_hint,
            timeout=timeout,
            progress_cb=progress_cb,
        )

    # Internal helpers -------------------------------------------------

    def _upload_single(
        self,
        key: str,
        data: bytes,
        content_type: str | None,
        metadata: Mapping[str, str] | None,
        progress_cb: ProgressCallback | None,
    ) -> ObjectInfo:
        progress = UploadProgress(
            filename=key,
            total_bytes=len(data),
            uploaded_bytes=0,
            total_parts=1,
            completed_parts=0,
            state="uploading",
        )
        self._emit_progress(progress_cb, replace(progress))
        try:
            info = self._store.put(key, data, content_type=content_type, metadata=metadata)
        except StoreError as exc:
            self._logger.error("upload.single_failed key=%s classification=%s", key, exc.classification)
            raise UploadError(f"Upload failed for {key}: {exc}", classification=exc.classification) from exc
        progress.uploaded_bytes = len(data)
        progress.completed_parts = 1
        progress.state = "completed"
        self._emit_progress(progress_cb, replace(progress))
        return info

    def _upload_multipart(
        self,
        key: str,
        data: bytes,
        upload_plan: UploadPlan,
        content_type: str | None,
        metadata: Mapping[str, str] | None,
        deadline: _Deadline,
        progress_cb: ProgressCallback | None,
    ) -> ObjectInfo:
        try:
            upload = self._store.create_multipart_upload(key, content_type=content_type, metadata=metadata)
        except StoreError as exc:
            raise UploadError(f"Unable to start multipart upload for {key}: {exc}", classification=exc.classification) from exc

        total_parts = part_count(len(data), upload_plan)
        progress = UploadProgress(
            filename=key,
            total_bytes=len(data),
            uploaded_bytes=0,
            total_parts=total_parts,
            completed_parts=0,
            state="uploading",
        )
        self._emit_progress(progress_cb, replace(progress))

        lock = threading.Lock()
        stop = threading.Event()
        view = memoryview(data)

        def worker(part_number: int, offset: int, length: int) -> CompletedPart:
            chunk = bytes(view[offset : offset + length])
            for attempt in range(1, self._max_part_attempts + 1):
                if stop.is_set() or deadline.expired():
                    raise UploadTimeoutError(f"Upload deadline exceeded at part {part_number}: {key}")
                try:
                    completed = self._store.upload_part(upload, part_number, chunk)
                    break
                except StoreRetryableError:
                    if attempt >= self._max_part_attempts:
                        raise
                    self._logger.warning(
                        "upload.part_retry key=%s part=%d attempt=%d", key, part_number, attempt
                    )
                    time.sleep(self._backoff_sec * (2 ** (attempt - 1)))
            with lock:
                progress.uploaded_bytes += length
                progress.completed_parts += 1
                self._emit_progress(progress_cb, replace(progress))
            return completed

        executor = ThreadPoolExecutor(max_workers=upload_plan.parallelism)
        futures: list[Future[CompletedPart]] = []
        try:
            for part_number, offset, length in iter_part_ranges(len(data), upload_plan):
                futures.append(executor.submit(worker, part_number, offset, length))
            done, pending = wait(futures, timeout=deadline.remaining(), return_when=FIRST_EXCEPTION)
            failure: BaseException | None = None
            for future in done:
                exc = future.exception()
                if exc is not None:
                    failure = exc
                    break
            if failure is None and pending:
                failure = UploadTimeoutError(f"Upload deadline exceeded: {key}")
        finally:
            # in-flight parts finish before any abort below
            stop.set()
            executor.shutdown(wait=True, cancel_futures=True)

        if failure is not None:
            self._abort(upload)
            progress.state = "aborted"
            progress.message = str(failure)
            self._emit_progress(progress_cb, replace(progress))
            if isinstance(failure, UploadError):
                raise failure
            if isinstance(failure, StoreError):
                raise UploadError(
                    f"Part upload failed for {key}: {failure}", classification=failure.classification
                ) from failure
            raise UploadError(f"Part upload failed for {key}: {failure}") from failure

        parts = [future.result() for future in futures]
        progress.state = "committing"
        self._emit_progress(progress_cb, replace(progress))
        try:
            info = self._store.complete_multipart_upload(upload, parts)
        except StoreError as exc:
            self._abort(upload)
            raise UploadError(f"Unable to complete upload for {key}: {exc}", classification=exc.classification) from exc
        progress.state = "completed"
        self._emit_progress(progress_cb, replace(progress))
        self._logger.info("upload.completed key=%s size=%d parts=%d", key, len(data), total_parts)
        return info

    def _abort(self, upload: MultipartUpload) -> None:
        try:
            self._store.abort_multipart_upload(upload)
        except StoreError as exc:
            self._logger.error(
                "upload.abort_failed key=%s upload_id=%s error=%s", upload.key, upload.upload_id, exc
            )

    def _emit_progress(self, callback: ProgressCallback | None, progress: UploadProgress) -> None:
        if callback:
            callback(progress)


__all__ = [
    "ChunkedUploader",
    "UploadProgress",
    "ProgressCallback",
]
