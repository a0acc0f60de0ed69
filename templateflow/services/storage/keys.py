"""Object key and metadata conventions for the remote store."""

from __future__ import annotations

import base64
import re
from datetime import datetime, timezone
from pathlib import PurePosixPath

ORIGINAL_NAME_METADATA = "original-name"

_UNSAFE = re.compile(r"[^A-Za-z0-9.-]+")


def sanitize_name(value: str) -> str:
    """Replace runs of non-alphanumeric characters with a single underscore."""

    cleaned = _UNSAFE.sub("_", value.strip()).strip("_")
    return cleaned or "file"


def build_object_key(
    kind: str,
    category: str,
    original_name: str,
    *,
    subcategory: str | None = None,
    now: datetime | None = None,
) -> str:
    """Return ``<kind>/<category>[/<subcategory>]/<timestamp>_<name>``.

    The original (possibly non-ASCII) name never appears verbatim in the key;
    store it with :func:`encode_original_name` in the object metadata.
    """

    moment = now or datetime.now(timezone.utc)
    stamp = moment.strftime("%Y%m%d%H%M%S") + f"{moment.microsecond // 1000:03d}"
    name = PurePosixPath(original_name.replace("\\", "/")).name
    stem = sanitize_name(name)
    segments = [sanitize_name(kind), sanitize_name(category)]
    if subcategory:
        segments.append(sanitize_name(subcategory))
    segments.append(f"{stamp}_{stem}")
    return "/".join(segments)


def template_prefix(prefix: str, category: str, key: str) -> str:
    """Listing prefix under which a template's versions live."""

    return f"{prefix.strip('/')}/{category}/{key}/"


def encode_original_name(name: str) -> str:
    return base64.b64encode(name.encode("utf-8")).decode("ascii")


def decode_original_name(value: str | None) -> str | None:
    if not value:
        return None
    try:
        return base64.b64decode(value.encode("ascii"), validate=True).decode("utf-8")
    except (ValueError, UnicodeError):
        return None


__all__ = [
    "ORIGINAL_NAME_METADATA",
    "sanitize_name",
    "build_object_key",
    "template_prefix",
    "encode_original_name",
    "decode_original_name",
]
