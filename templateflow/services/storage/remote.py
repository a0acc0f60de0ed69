"""Object store adapter for a REST object gateway.

Endpoint layout::

    PUT    /objects/{key}                 store an object (X-Meta-* headers)
    GET    /objects/{key}                 stream an object
    HEAD   /objects/{key}                 object metadata
    DELETE /objects/{key}
    GET    /objects?prefix=...            {"items": [...]}
    POST   /uploads                       {"uploadId": ...}
    PUT    /uploads/{id}/parts/{n}        {"etag": ...}
    POST   /uploads/{id}/complete
    DELETE /uploads/{id}
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Iterator, Mapping
from urllib.parse import quote

from requests.exceptions import RequestException

from templateflow.config import StoreSettings
from templateflow.core.logger import get_logger

from .http import HttpClient
from .models import (
    CompletedPart,
    MultipartUpload,
    ObjectInfo,
    StoreRequestError,
    StoreRetryableError,
)

LOGGER = get_logger()

META_HEADER_PREFIX = "X-Meta-"


def parse_timestamp(value: Any) -> datetime | None:
    """Parse ISO-8601 or RFC 7231 timestamps into aware datetimes."""

    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            try:
                parsed = parsedate_to_datetime(text)
            except (TypeError, ValueError):
                return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class HttpObjectStore:
    """``ObjectStore`` implementation backed by :class:`HttpClient`."""

    def __init__(
        self,
        settings: StoreSettings,
        *,
        http_client: HttpClient | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._logger = logger or LOGGER
        self._http = http_client or HttpClient(settings, logger=self._logger)

    def put(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str | None = None,
        metadata: Mapping[str, str] | None = None,
    ) -> ObjectInfo:
        headers = self._meta_headers(metadata)
        if content_type:
            headers["Content-Type"] = content_type
        response = self._http.request(
            "PUT",
            self._object_path(key),
            headers=headers,
            data=bytes(data),
            expected_status=(200, 201),
        )
        info = self._info_from_body(key, self._json(response))
        if info is None:
            return self.head(key)
        return info

    def get(self, key: str) -> bytes:
        return b"".join(self.iter_content(key))

    def iter_content(
        self, key: str, *, chunk_size: int = 128 * 1024, timeout: float | None = None
    ) -> Iterator[bytes]:
        response = self._http.request("GET", self._object_path(key), stream=True, budget=timeout)
        try:
            for chunk in response.iter_content(chunk_size=chunk_size):
                if chunk:
                    yield chunk
        except RequestException as exc:
            raise StoreRetryableError("Stream interrupted", payload={"key": key}) from exc
        finally:
            response.close()

    def head(self, key: str) -> ObjectInfo:
        response = self._http.request("HEAD", self._object_path(key))
        headers = response.headers
        last_modified = parse_timestamp(headers.get("Last-Modified"))
        if last_modified is None:
            raise StoreRequestError("HEAD response missing Last-Modified", payload={"key": key})
        metadata = {
            name[len(META_HEADER_PREFIX):].lower(): value
            for name, value in headers.items()
            if name.lower().startswith(META_HEADER_PREFIX.lower())
        }
        return ObjectInfo(
            key=key,
            size=int(headers.get("Content-Length") or 0),
            last_modified=last_modified,
            metadata=metadata,
            content_type=headers.get("Content-Type"),
        )

    def list(self, prefix: str, *, timeout: float | None = None) -> list[ObjectInfo]:
        response = self._http.request("GET", "/objects", params={"prefix": prefix}, budget=timeout)
        body = self._json(response)
        items = body.get("items") or body.get("objects") or []
        results: list[ObjectInfo] = []
        for raw in items:
            if not isinstance(raw, Mapping):
                continue
            info = self._info_from_body(str(raw.get("key") or raw.get("name") or ""), raw)
            if info is None or not info.key:
                self._logger.warning("storage.remote list_item_skipped prefix=%s item=%s", prefix, raw)
                continue
            results.append(info)
        return results

    def delete(self, key: str) -> None:
        self._http.request("DELETE", self._object_path(key), expected_status=(200, 204))

    def create_multipart_upload(
        self,
        key: str,
        *,
        content_type: str | None = None,
        metadata: Mapping[str, str] | None = None,
    ) -> MultipartUpload:
        response = self._http.request(
            "POST",
            "/uploads",
            json_body={"key": key, "contentType": content_type, "metadata": dict(metadata or {})},
            expected_status=(200, 201),
        )
        body = self._json(response)
        upload_id = body.get("uploadId") or body.get("id")
        if not upload_id:
            raise StoreRequestError("Multipart init response missing uploadId", payload=body)
        return MultipartUpload(key=key, upload_id=str(upload_id))

    def upload_part(self, upload: MultipartUpload, part_number: int, data: bytes) -> CompletedPart:
        response = self._http.request(
            "PUT",
            f"/uploads/{quote(upload.upload_id)}/parts/{part_number}",
            data=bytes(data),
            expected_status=(200, 201, 204),
        )
        etag = response.headers.get("ETag") or self._json(response).get("etag")
        if not etag:
            raise StoreRequestError(
                "Part upload response missing etag",
                payload={"uploadId": upload.upload_id, "part": part_number},
            )
        return CompletedPart(part_number=part_number, etag=str(etag))

    def complete_multipart_upload(self, upload: MultipartUpload, parts: list[CompletedPart]) -> ObjectInfo:
        payload = {
            "parts": [
                {"partNumber": part.part_number, "etag": part.etag}
                for part in sorted(parts, key=lambda item: item.part_number)
            ]
        }
        response = self._http.request(
            "POST",
            f"/uploads/{quote(upload.upload_id)}/complete",
            json_body=payload,
            expected_status=(200, 201),
        )
        info = self._info_from_body(upload.key, self._json(response))
        if info is None:
            return self.head(upload.key)
        return info

    def abort_multipart_upload(self, upload: MultipartUpload) -> None:
        self._http.request(
            "DELETE",
            f"/uploads/{quote(upload.upload_id)}",
            expected_status=(200, 204),
            allow_retry=True,
        )
        self._logger.info("storage.remote multipart_aborted key=%s upload_id=%s", upload.key, upload.upload_id)

    def close(self) -> None:
        self._http.close()

    # Internal helpers -------------------------------------------------

    def _object_path(self, key: str) -> str:
        return f"/objects/{quote(key, safe='/')}"

    def _meta_headers(self, metadata: Mapping[str, str] | None) -> dict[str, str]:
        return {f"{META_HEADER_PREFIX}{name}": str(value) for name, value in (metadata or {}).items()}

    def _json(self, response: Any) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    def _info_from_body(self, key: str, body: Mapping[str, Any]) -> ObjectInfo | None:
        last_modified = parse_timestamp(body.get("lastModified") or body.get("last_modified"))
        if last_modified is None:
            return None
        metadata = body.get("metadata") or {}
        return ObjectInfo(
            key=str(body.get("key") or key),
            size=int(body.get("size") or 0),
            last_modified=last_modified,
            metadata={str(k): str(v) for k, v in metadata.items()} if isinstance(metadata, Mapping) else {},
            content_type=body.get("contentType") or body.get("content_type"),
        )


__all__ = ["HttpObjectStore", "parse_timestamp", "META_HEADER_PREFIX"]
