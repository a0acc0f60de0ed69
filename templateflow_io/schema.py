"""Shared schemas for template filling."""

# Module responsibilities:
# - Provide typed containers for hierarchical row input (records and groups).
# - Define the fill options contract and its YAML loader.

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Literal, Mapping, Optional, Sequence

import yaml

from templateflow.core.errors import ConfigError

RowKind = Literal["parent", "child"]

DEFAULT_SHEET = "Template"
DEFAULT_HEADER_ROW = 3
DEFAULT_KEY_COLUMN = "item_sku"
DEFAULT_ATTRIBUTE1_COLUMN = "color_name"
DEFAULT_ATTRIBUTE2_COLUMN = "size_name"


@dataclass(frozen=True)
class RowRecord:
    """One output line: a parent or child record."""

    kind: RowKind
    key_value: str
    attribute1: str = ""
    attribute2: str = ""

    def __post_init__(self) -> None:
        if self.kind not in ("parent", "child"):
            raise ValueError(f"Unknown row kind: {self.kind!r}")


@dataclass(frozen=True)
class RowGroup:
    """A parent record (optional) followed by its ordered children."""

    key: str
    parent: Optional[RowRecord] = None
    children: tuple[RowRecord, ...] = ()

    def rows(self) -> list[RowRecord]:
        rows: list[RowRecord] = []
        if self.parent is not None:
            rows.append(self.parent)
        rows.extend(self.children)
        return rows

    def __len__(self) -> int:
        return len(self.children) + (1 if self.parent is not None else 0)


@dataclass(frozen=True)
class DatasetRow:
    """A flat dataset line as read from CSV/Excel input."""

    parent_key: str
    child_key: str
    attribute1: str = ""
    attribute2: str = ""


@dataclass(frozen=True)
class FillOptions:
    """Template layout contract and fill behaviour.

    ``anchor_row`` defaults to the row right below ``header_row``.
    ``required_columns`` defaults to the three mapped columns.
    Rows below the anchor (sample rows shipped with the template) are
    dropped unless ``keep_trailing_rows`` is set.
    """

    sheet_name: str = DEFAULT_SHEET
    allow_first_sheet_fallback: bool = False
    header_row: int = DEFAULT_HEADER_ROW
    anchor_row: Optional[int] = None
    key_column: str = DEFAULT_KEY_COLUMN
    attribute1_column: str = DEFAULT_ATTRIBUTE1_COLUMN
    attribute2_column: str = DEFAULT_ATTRIBUTE2_COLUMN
    required_columns: tuple[str, ...] = ()
    file_extension: str = "xlsx"
    keep_anchor_row: bool = False
    keep_trailing_rows: bool = False
    group_order: Optional[tuple[str, ...]] = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.header_row < 1:
            raise ValueError("header_row must be >= 1")
        if self.anchor_row is not None and self.anchor_row <= self.header_row:
            raise ValueError("anchor_row must be below header_row")

    @property
    def resolved_anchor_row(self) -> int:
        return self.anchor_row if self.anchor_row is not None else self.header_row + 1

    @property
    def mapped_columns(self) -> tuple[str, str, str]:
        return (
            self.key_column.strip().lower(),
            self.attribute1_column.strip().lower(),
            self.attribute2_column.strip().lower(),
        )

    @property
    def resolved_required_columns(self) -> tuple[str, ...]:
        names = self.required_columns or self.mapped_columns
        ordered: list[str] = []
        for name in (*names, *self.mapped_columns):
            normalized = name.strip().lower()
            if normalized and normalized not in ordered:
                ordered.append(normalized)
        return tuple(ordered)

    def with_extension(self, extension: str) -> "FillOptions":
        return replace(self, file_extension=extension)

    def with_group_order(self, order: Sequence[str] | None) -> "FillOptions":
        return replace(self, group_order=tuple(order) if order is not None else None)

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "FillOptions":
        known = {
            "sheet",
            "sheet_name",
            "allow_first_sheet_fallback",
            "header_row",
            "anchor_row",
            "columns",
            "required_columns",
            "file_extension",
            "keep_anchor_row",
            "keep_trailing_rows",
            "group_order",
        }
        columns = payload.get("columns") or {}
        if not isinstance(columns, Mapping):
            raise ConfigError("Fill options 'columns' must be a mapping")
        try:
            anchor = payload.get("anchor_row")
            order = payload.get("group_order")
            return cls(
                sheet_name=str(payload.get("sheet_name", payload.get("sheet", DEFAULT_SHEET))),
                allow_first_sheet_fallback=bool(payload.get("allow_first_sheet_fallback", False)),
                header_row=int(payload.get("header_row", DEFAULT_HEADER_ROW)),
                anchor_row=int(anchor) if anchor is not None else None,
                key_column=str(columns.get("key", DEFAULT_KEY_COLUMN)),
                attribute1_column=str(columns.get("attribute1", DEFAULT_ATTRIBUTE1_COLUMN)),
                attribute2_column=str(columns.get("attribute2", DEFAULT_ATTRIBUTE2_COLUMN)),
                required_columns=tuple(str(c) for c in payload.get("required_columns") or ()),
                file_extension=str(payload.get("file_extension", "xlsx")),
                keep_anchor_row=bool(payload.get("keep_anchor_row", False)),
                keep_trailing_rows=bool(payload.get("keep_trailing_rows", False)),
                group_order=tuple(str(k) for k in order) if order else None,
                extra={k: v for k, v in payload.items() if k not in known},
            )
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid fill options: {exc}") from exc

    @classmethod
    def from_yaml(cls, path: Path) -> "FillOptions":
        """Load fill options from a YAML mapping file."""

        with path.open("r", encoding="utf-8") as fh:
            payload = yaml.safe_load(fh)
        if not isinstance(payload, dict):
            raise ConfigError("Invalid mapping YAML structure (expected mapping)")
        return cls.from_mapping(payload)
