"""Parsed-workbook interface and the openpyxl implementation."""

# Module responsibilities:
# - Define the minimal sheet/workbook operations the fill engine relies on.
# - Implement them on openpyxl while keeping styles, row heights and macros.

from __future__ import annotations

import io
import zipfile
from abc import ABC, abstractmethod
from copy import copy
from typing import Callable, List

from openpyxl import load_workbook
from openpyxl.cell.cell import MergedCell
from openpyxl.utils.exceptions import InvalidFileException
from openpyxl.workbook.workbook import Workbook
from openpyxl.worksheet.worksheet import Worksheet

from templateflow.core.errors import TemplateStructureError

from .content_types import MACRO_CONTAINERS, resolve_container


class SheetAdapter(ABC):
    """Row/column operations on a single worksheet (1-based indexes)."""

    title: str

    @property
    @abstractmethod
    def max_row(self) -> int:
        """Last used row index."""

    @property
    @abstractmethod
    def max_column(self) -> int:
        """Last used column index."""

    @abstractmethod
    def cell_value(self, row: int, column: int) -> object:
        """Return the value stored at ``(row, column)``."""

    @abstractmethod
    def set_value(self, row: int, column: int, value: object) -> None:
        """Overwrite the value at ``(row, column)`` keeping its style."""

    def header_values(self, row: int) -> List[object]:
        return [self.cell_value(row, col) for col in range(1, self.max_column + 1)]

    @abstractmethod
    def insert_rows(self, index: int, amount: int = 1) -> None:
        """Insert ``amount`` empty rows before ``index``."""

    @abstractmethod
    def copy_row(self, source: int, target: int) -> None:
        """Copy values, styles and height of row ``source`` onto ``target``."""

    @abstractmethod
    def delete_rows(self, index: int, amount: int = 1) -> None:
        """Remove ``amount`` rows starting at ``index``, shifting the rest up."""


class WorkbookAdapter(ABC):
    """A parsed workbook owned by a single fill call."""

    @property
    @abstractmethod
    def sheet_names(self) -> List[str]:
        """Worksheet titles in workbook order."""

    @abstractmethod
    def get_sheet(self, name: str) -> SheetAdapter:
        """Return the named sheet; raise ``KeyError`` when absent."""

    def first_sheet(self) -> SheetAdapter:
        if not self.sheet_names:
            raise KeyError("Workbook has no worksheets")
        return self.get_sheet(self.sheet_names[0])

    @abstractmethod
    def to_bytes(self, container: str) -> bytes:
        """Serialise the workbook as ``container`` (xlsx, xlsm, xltx, xltm)."""


WorkbookLoader = Callable[[bytes, str], WorkbookAdapter]


class OpenpyxlSheet(SheetAdapter):
    def __init__(self, worksheet: Worksheet) -> None:
        self._ws = worksheet
        self.title = worksheet.title

    @property
    def max_row(self) -> int:
        return self._ws.max_row or 0

    @property
    def max_column(self) -> int:
        return self._ws.max_column or 0

    def cell_value(self, row: int, column: int) -> object:
        return self._ws.cell(row=row, column=column).value

    def set_value(self, row: int, column: int, value: object) -> None:
        cell = self._ws.cell(row=row, column=column)
        if isinstance(cell, MergedCell):
            raise TemplateStructureError(
                f"Cannot write into merged cell at row {row}, column {column}",
                sheet=self.title,
            )
        cell.value = value

    def header_values(self, row: int) -> List[object]:
        values = next(
            self._ws.iter_rows(min_row=row, max_row=row, values_only=True),
            None,
        )
        return list(values or ())

    def insert_rows(self, index: int, amount: int = 1) -> None:
        if amount > 0:
            self._ws.insert_rows(index, amount)
            self._shift_heights(index, amount, dropped=0)

    def copy_row(self, source: int, target: int) -> None:
        for col in range(1, self.max_column + 1):
            src = self._ws.cell(row=source, column=col)
            dst = self._ws.cell(row=target, column=col)
            if isinstance(dst, MergedCell):
                continue
            dst.value = src.value
            if src.has_style:
                dst._style = copy(src._style)
            if src.hyperlink is not None:
                dst.hyperlink = copy(src.hyperlink)
        source_dim = self._ws.row_dimensions.get(source)
        if source_dim is not None and source_dim.height is not None:
            self._ws.row_dimensions[target].height = source_dim.height

    def delete_rows(self, index: int, amount: int = 1) -> None:
        if amount > 0:
            self._ws.delete_rows(index, amount)
            self._shift_heights(index, -amount, dropped=amount)

    def _shift_heights(self, start: int, delta: int, *, dropped: int) -> None:
        # openpyxl moves cells but leaves row dimensions in place
        dims = self._ws.row_dimensions
        heights = {idx: dim.height for idx, dim in list(dims.items()) if idx >= start and dim.height is not None}
        for idx in heights:
            dims[idx].height = None
        for idx, height in heights.items():
            if idx < start + dropped:
                continue
            dims[idx + delta].height = height


class OpenpyxlWorkbook(WorkbookAdapter):
    """openpyxl-backed workbook. Macro containers keep their VBA project."""

    def __init__(self, workbook: Workbook) -> None:
        self._wb = workbook

    @classmethod
    def load(cls, data: bytes, extension: str) -> "OpenpyxlWorkbook":
        container = resolve_container(extension)
        try:
            workbook = load_workbook(io.BytesIO(data), keep_vba=container in MACRO_CONTAINERS)
        except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError, ValueError) as exc:
            raise TemplateStructureError(f"Template is not a readable workbook: {exc}") from exc
        return cls(workbook)

    @property
    def sheet_names(self) -> List[str]:
        return list(self._wb.sheetnames)

    def get_sheet(self, name: str) -> SheetAdapter:
        if name not in self._wb.sheetnames:
            raise KeyError(name)
        return OpenpyxlSheet(self._wb[name])

    def to_bytes(self, container: str) -> bytes:
        resolved = resolve_container(container)
        self._wb.template = resolved in ("xltx", "xltm")
        buffer = io.BytesIO()
        self._wb.save(buffer)
        return buffer.getvalue()

    def close(self) -> None:
        self._wb.close()
