"""Header scanning and column resolution."""

# Module responsibilities:
# - Normalize header text and map it to 1-based column indexes.
# - Enforce that every required column resolves to exactly one position.

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Iterator, Mapping, Sequence

from templateflow.core.errors import TemplateStructureError


def normalize_header(value: object) -> str:
    """Trim and lower-case a header cell; ``None`` becomes an empty string."""

    if value is None:
        return ""
    return str(value).strip().lower()


@dataclass(frozen=True)
class ColumnMap(Mapping[str, int]):
    """Normalized header name -> 1-based column index."""

    positions: Mapping[str, int] = field(default_factory=dict)

    def __getitem__(self, name: str) -> int:
        return self.positions[normalize_header(name)]

    def __iter__(self) -> Iterator[str]:
        return iter(self.positions)

    def __len__(self) -> int:
        return len(self.positions)

    def __contains__(self, name: object) -> bool:
        return normalize_header(name) in self.positions

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ColumnMap):
            return dict(self.positions) == dict(other.positions)
        if isinstance(other, Mapping):
            return dict(self.positions) == dict(other)
        return NotImplemented

    def __hash__(self) -> int:
        return hash(tuple(sorted(self.positions.items())))


def resolve_column_map(
    header_values: Sequence[object],
    required: Iterable[str],
    *,
    header_row: int | None = None,
) -> ColumnMap:
    """Build a :class:`ColumnMap` from the values of a header row.

    Matching is exact after normalization. When a non-required header
    repeats, the first occurrence wins; a repeated required header is an
    error because it cannot be filled unambiguously.

    Raises:
        TemplateStructureError: naming every missing or duplicated column.
    """

    positions: dict[str, int] = {}
    duplicates: set[str] = set()
    for idx, raw in enumerate(header_values, start=1):
        name = normalize_header(raw)
        if not name:
            continue
        if name in positions:
            duplicates.add(name)
            continue
        positions[name] = idx

    required_names = [normalize_header(name) for name in required]
    missing = [name for name in required_names if name not in positions]
    ambiguous = [name for name in required_names if name in duplicates]
    where = f" in header row {header_row}" if header_row is not None else ""
    if missing:
        raise TemplateStructureError(
            f"Required column(s) not found{where}: {', '.join(missing)}",
            missing_columns=missing,
        )
    if ambiguous:
        raise TemplateStructureError(
            f"Required column(s) appear more than once{where}: {', '.join(ambiguous)}",
            missing_columns=ambiguous,
        )
    return ColumnMap(positions)
