"""Custom exceptions used across TemplateFlow."""

from __future__ import annotations

from typing import Iterable


class TemplateFlowError(Exception):
    """Base error for the application."""


class ConfigError(TemplateFlowError):
    """Configuration related error."""


class NotFoundError(TemplateFlowError):
    """Raised when no remote template exists for a category/key."""

    def __init__(self, message: str, *, category: str | None = None, key: str | None = None) -> None:
        super().__init__(message)
        self.category = category
        self.key = key


class FetchError(TemplateFlowError):
    """Raised when reading from the object store fails.

    ``classification`` mirrors the store error (permission, not_found,
    retryable, unknown) so callers can decide on backoff.
    """

    def __init__(self, message: str, *, classification: str = "unknown") -> None:
        super().__init__(message)
        self.classification = classification


class FetchTimeoutError(FetchError):
    """Raised when a template fetch exceeds the caller deadline."""

    def __init__(self, message: str) -> None:
        super().__init__(message, classification="timeout")


class TemplateStructureError(TemplateFlowError):
    """Raised when the required sheet or header columns are missing."""

    def __init__(
        self,
        message: str,
        *,
        sheet: str | None = None,
        missing_columns: Iterable[str] = (),
    ) -> None:
        super().__init__(message)
        self.sheet = sheet
        self.missing_columns = tuple(missing_columns)


class EmptyInputError(TemplateFlowError):
    """Raised when a fill request carries no rows."""


class CacheCorruptionError(TemplateFlowError):
    """Raised internally when a local cache entry cannot be read."""


class UploadError(TemplateFlowError):
    """Raised when upload fails."""

    def __init__(self, message: str, *, classification: str = "unknown") -> None:
        super().__init__(message)
        self.classification = classification


class UploadTimeoutError(UploadError):
    """Raised when an upload exceeds the caller deadline."""

    def __init__(self, message: str) -> None:
        super().__init__(message, classification="timeout")
