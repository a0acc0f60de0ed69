"""`templateflow_io` exports the spreadsheet template engine and its data model."""

# Module responsibilities:
# - Re-export the fill engine, workbook adapters and row schemas as a stable API surface.
# - Provide the package version.

from __future__ import annotations

from .columns import ColumnMap, normalize_header, resolve_column_map
from .content_types import content_type_for, file_extension, output_file_name, resolve_container
from .engine import SpreadsheetTemplateEngine
from .grouping import flatten_groups, group_rows, load_dataset, select_groups
from .schema import DatasetRow, FillOptions, RowGroup, RowRecord
from .workbook import OpenpyxlWorkbook, SheetAdapter, WorkbookAdapter

__all__ = [
    "ColumnMap",
    "normalize_header",
    "resolve_column_map",
    "content_type_for",
    "file_extension",
    "output_file_name",
    "resolve_container",
    "SpreadsheetTemplateEngine",
    "flatten_groups",
    "group_rows",
    "load_dataset",
    "select_groups",
    "DatasetRow",
    "FillOptions",
    "RowGroup",
    "RowRecord",
    "OpenpyxlWorkbook",
    "SheetAdapter",
    "WorkbookAdapter",
]

__version__ = "0.1.0"
