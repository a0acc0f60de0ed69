"""Content types, container formats and output file names."""

# Module responsibilities:
# - Map file extensions to MIME types for downloads and object metadata.
# - Decide which workbook container an extension is written back as.

from __future__ import annotations

from pathlib import PurePath
from typing import Iterable

OCTET_STREAM = "application/octet-stream"

CONTENT_TYPES: dict[str, str] = {
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "xlsm": "application/vnd.ms-excel.sheet.macroEnabled.12",
    "xltx": "application/vnd.openxmlformats-officedocument.spreadsheetml.template",
    "xltm": "application/vnd.ms-excel.template.macroEnabled.12",
    "xls": "application/vnd.ms-excel",
    "csv": "text/csv",
    "pdf": "application/pdf",
    "json": "application/json",
}

SUPPORTED_CONTAINERS = ("xlsx", "xlsm", "xltx", "xltm")
MACRO_CONTAINERS = ("xlsm", "xltm")
DEFAULT_CONTAINER = "xlsx"
DEFAULT_TEMPLATE_EXTENSION = "xlsm"


def normalize_extension(extension: str | None) -> str:
    return (extension or "").strip().lstrip(".").lower()


def file_extension(file_name: str | None, default: str = DEFAULT_TEMPLATE_EXTENSION) -> str:
    """Return the lower-cased extension of ``file_name`` (without the dot)."""

    if not file_name:
        return default
    suffix = PurePath(file_name).suffix
    return normalize_extension(suffix) or default


def content_type_for(extension: str | None) -> str:
    return CONTENT_TYPES.get(normalize_extension(extension), OCTET_STREAM)


def resolve_container(extension: str | None) -> str:
    """Return the workbook container written for ``extension``.

    Unknown or unsupported extensions (``xls``, ``csv``...) degrade to
    ``xlsx`` instead of failing.
    """

    ext = normalize_extension(extension)
    if ext in SUPPORTED_CONTAINERS:
        return ext
    return DEFAULT_CONTAINER


def output_file_name(prefix: str, keys: Iterable[str], extension: str) -> str:
    """Build ``<prefix>_<key1>_<key2>.<ext>`` for a generated document."""

    parts = [prefix] if prefix else []
    parts.extend(str(key) for key in keys if str(key))
    stem = "_".join(parts) or "document"
    return f"{stem}.{normalize_extension(extension) or DEFAULT_CONTAINER}"
