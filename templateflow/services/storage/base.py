"""Abstract object store contract consumed by the cache and the uploader."""

from __future__ import annotations

from typing import Iterator, Mapping, Protocol

from .models import CompletedPart, MultipartUpload, ObjectInfo


class ObjectStore(Protocol):
    """Remote blob store addressed by object key.

    Every object carries a last-modified timestamp and free-form string
    metadata. Multipart uploads stay invisible to ``head``/``get``/``list``
    until ``complete_multipart_upload`` succeeds.
    """

    def put(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str | None = None,
        metadata: Mapping[str, str] | None = None,
    ) -> ObjectInfo:
        """Store ``data`` under ``key`` replacing any previous object."""

    def get(self, key: str) -> bytes:
        """Return the whole object body."""

    def iter_content(
        self, key: str, *, chunk_size: int = 128 * 1024, timeout: float | None = None
    ) -> Iterator[bytes]:
        """Yield the object body in chunks.

        ``timeout`` bounds the request (retries included), not the caller's
        consumption of the chunks.
        """

    def head(self, key: str) -> ObjectInfo:
        """Return object metadata without reading the body."""

    def list(self, prefix: str, *, timeout: float | None = None) -> list[ObjectInfo]:
        """List objects whose key starts with ``prefix`` within ``timeout`` seconds."""

    def delete(self, key: str) -> None:
        """Remove the object."""

    def create_multipart_upload(
        self,
        key: str,
        *,
        content_type: str | None = None,
        metadata: Mapping[str, str] | None = None,
    ) -> MultipartUpload:
        """Start a multipart upload for ``key``."""

    def upload_part(self, upload: MultipartUpload, part_number: int, data: bytes) -> CompletedPart:
        """Upload one part (1-based ``part_number``)."""

    def complete_multipart_upload(self, upload: MultipartUpload, parts: list[CompletedPart]) -> ObjectInfo:
        """Assemble the uploaded parts and publish the object."""

    def abort_multipart_upload(self, upload: MultipartUpload) -> None:
        """Discard all uploaded parts."""


__all__ = ["ObjectStore"]
