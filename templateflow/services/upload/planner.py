"""Adaptive transfer planning for object store uploads.

``plan()`` maps a payload size (plus an optional connection quality hint)
to a part size, a worker count and whether multipart transfer is used at
all. It is a pure function: identical inputs always give identical plans.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Iterator

KIB = 1024
MIB = 1024 * KIB
GIB = 1024 * MIB

SMALL_FILE_THRESHOLD = 10 * MIB
MEDIUM_FILE_THRESHOLD = 100 * MIB
LARGE_FILE_THRESHOLD = 500 * MIB
VERY_LARGE_FILE_THRESHOLD = 2 * GIB

MEDIUM_PART_SIZE = 1 * MIB
MEDIUM_MAX_PARALLELISM = 6
MEDIUM_BYTES_PER_WORKER = 16 * MIB
LARGE_PART_BAND = (2 * MIB, 5 * MIB)
LARGE_PARALLELISM = 8
VERY_LARGE_PART_BAND = (5 * MIB, 10 * MIB)
MAX_PART_SIZE = 10 * MIB
MAX_PARALLELISM = 10

SLOW_MIN_PART_SIZE = 512 * KIB
FAST_PARALLELISM_FACTOR = 1.5
PARALLELISM_CEILING = 12

QUALITY_HINTS = ("slow", "fast")


@dataclass(frozen=True, slots=True)
class UploadPlan:
    part_size: int
    parallelism: int
    use_chunking: bool


def _clamp(value: int, lower: int, upper: int) -> int:
    return max(lower, min(upper, value))


def _base_plan(size_bytes: int) -> UploadPlan:
    if size_bytes <= SMALL_FILE_THRESHOLD:
        return UploadPlan(part_size=size_bytes, parallelism=1, use_chunking=False)
    if size_bytes <= MEDIUM_FILE_THRESHOLD:
        workers = _clamp(math.ceil(size_bytes / MEDIUM_BYTES_PER_WORKER), 1, MEDIUM_MAX_PARALLELISM)
        return UploadPlan(part_size=MEDIUM_PART_SIZE, parallelism=workers, use_chunking=True)
    if size_bytes <= LARGE_FILE_THRESHOLD:
        part = _clamp(size_bytes // 100, *LARGE_PART_BAND)
        return UploadPlan(part_size=part, parallelism=LARGE_PARALLELISM, use_chunking=True)
    if size_bytes <= VERY_LARGE_FILE_THRESHOLD:
        part = _clamp(size_bytes // 100, *VERY_LARGE_PART_BAND)
        return UploadPlan(part_size=part, parallelism=MAX_PARALLELISM, use_chunking=True)
    return UploadPlan(part_size=MAX_PART_SIZE, parallelism=MAX_PARALLELISM, use_chunking=True)


def plan(size_bytes: int, quality_hint: str | None = None) -> UploadPlan:
    """Return the transfer plan for a payload of ``size_bytes``.

    Args:
        size_bytes: Payload size in bytes.
        quality_hint: ``"slow"`` halves parallelism and part size,
            ``"fast"`` raises parallelism by half (bounded). ``None`` keeps
            the size-based plan.

    Raises:
        ValueError: For negative sizes or unknown hints.
    """

    if size_bytes < 0:
        raise ValueError("size_bytes must be non-negative")
    if quality_hint is not None and quality_hint not in QUALITY_HINTS:
        raise ValueError(f"Unknown quality hint: {quality_hint!r}")

    base = _base_plan(size_bytes)
    if quality_hint == "slow":
        part_size = base.part_size
        if base.use_chunking:
            part_size = max(SLOW_MIN_PART_SIZE, base.part_size // 2)
        return replace(base, parallelism=max(1, base.parallelism // 2), part_size=part_size)
    if quality_hint == "fast":
        boosted = min(PARALLELISM_CEILING, math.floor(base.parallelism * FAST_PARALLELISM_FACTOR))
        return replace(base, parallelism=max(base.parallelism, boosted))
    return base


def part_count(size_bytes: int, upload_plan: UploadPlan) -> int:
    if not upload_plan.use_chunking or upload_plan.part_size <= 0:
        return 1
    return max(1, math.ceil(size_bytes / upload_plan.part_size))


def iter_part_ranges(size_bytes: int, upload_plan: UploadPlan) -> Iterator[tuple[int, int, int]]:
    """Yield ``(part_number, offset, length)`` for each part, 1-based."""

    total = part_count(size_bytes, upload_plan)
    if total == 1:
        yield 1, 0, size_bytes
        return
    for idx in range(total):
        offset = idx * upload_plan.part_size
        yield idx + 1, offset, min(upload_plan.part_size, size_bytes - offset)


__all__ = [
    "UploadPlan",
    "plan",
    "part_count",
    "iter_part_ranges",
    "QUALITY_HINTS",
    "SMALL_FILE_THRESHOLD",
    "MEDIUM_FILE_THRESHOLD",
    "LARGE_FILE_THRESHOLD",
    "VERY_LARGE_FILE_THRESHOLD",
]
