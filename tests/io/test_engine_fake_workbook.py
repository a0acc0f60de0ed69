from __future__ import annotations

from typing import Dict, List, Tuple

import pytest

from templateflow.core.errors import TemplateStructureError
from templateflow_io import FillOptions, RowGroup, RowRecord, SpreadsheetTemplateEngine
from templateflow_io.workbook import SheetAdapter, WorkbookAdapter


class InMemorySheet(SheetAdapter):
    def __init__(self, title: str, rows: List[List[object]]) -> None:
        self.title = title
        self.cells: Dict[Tuple[int, int], object] = {}
        self.styles: Dict[Tuple[int, int], str] = {}
        self.ops: List[tuple] = []
        for r, values in enumerate(rows, start=1):
            for c, value in enumerate(values, start=1):
                if value is not None:
                    self.cells[(r, c)] = value

    @property
    def max_row(self) -> int:
        keys = list(self.cells) + list(self.styles)
        return max((r for r, _ in keys), default=0)

    @property
    def max_column(self) -> int:
        keys = list(self.cells) + list(self.styles)
        return max((c for _, c in keys), default=0)

    def cell_value(self, row: int, column: int) -> object:
        return self.cells.get((row, column))

    def set_value(self, row: int, column: int, value: object) -> None:
        self.ops.append(("set", row, column, value))
        if value is None:
            self.cells.pop((row, column), None)
        else:
            self.cells[(row, column)] = value

    def insert_rows(self, index: int, amount: int = 1) -> None:
        self.ops.append(("insert", index, amount))
        self.cells = {((r + amount) if r >= index else r, c): v for (r, c), v in self.cells.items()}
        self.styles = {((r + amount) if r >= index else r, c): v for (r, c), v in self.styles.items()}

    def copy_row(self, source: int, target: int) -> None:
        self.ops.append(("copy", source, target))
        for c in range(1, self.max_column + 1):
            if (source, c) in self.cells:
                self.cells[(target, c)] = self.cells[(source, c)]
            if (source, c) in self.styles:
                self.styles[(target, c)] = self.styles[(source, c)]

    def delete_rows(self, index: int, amount: int = 1) -> None:
        self.ops.append(("delete", index, amount))

        def shift(mapping):
            out = {}
            for (r, c), v in mapping.items():
                if index <= r < index + amount:
                    continue
                out[((r - amount) if r >= index + amount else r, c)] = v
            return out

        self.cells = shift(self.cells)
        self.styles = shift(self.styles)


class InMemoryWorkbook(WorkbookAdapter):
    def __init__(self, sheets: List[InMemorySheet]) -> None:
        self.sheets = {sheet.title: sheet for sheet in sheets}
        self.saved_as: str | None = None

    @property
    def sheet_names(self) -> List[str]:
        return list(self.sheets)

    def get_sheet(self, name: str) -> SheetAdapter:
        return self.sheets[name]

    def to_bytes(self, container: str) -> bytes:
        self.saved_as = container
        return container.encode("ascii")


def _workbook() -> InMemoryWorkbook:
    sheet = InMemorySheet(
        "Template",
        [
            ["title"],
            [None],
            ["item_sku", "color_name", "size_name", "note"],
            ["EXAMPLE", "x", "y", "keep me"],
        ],
    )
    sheet.styles[(4, 1)] = "highlight"
    return InMemoryWorkbook([sheet])


def _loader(workbook: InMemoryWorkbook):
    calls: list[tuple[bytes, str]] = []

    def load(data: bytes, extension: str) -> InMemoryWorkbook:
        calls.append((data, extension))
        return workbook

    return load, calls


def _groups() -> list[RowGroup]:
    return [
        RowGroup(
            key="A",
            parent=RowRecord("parent", "UKA"),
            children=(RowRecord("child", "a1", "Red", "S"), RowRecord("child", "a2", "Blue", "M")),
        ),
        RowGroup(key="B", parent=RowRecord("parent", "UKB"), children=(RowRecord("child", "b1", "Black", "L"),)),
    ]


def test_engine_drives_the_workbook_interface() -> None:
    workbook = _workbook()
    load, calls = _loader(workbook)
    engine = SpreadsheetTemplateEngine(load)

    result = engine.fill(b"raw", _groups(), FillOptions(file_extension="xltm"))

    sheet = workbook.sheets["Template"]
    assert result == b"xltm"
    assert calls == [(b"raw", "xltm")]
    assert [sheet.cell_value(r, 1) for r in range(4, 9)] == ["UKA", "a1", "a2", "UKB", "b1"]
    assert [sheet.cell_value(r, 4) for r in range(4, 9)] == ["keep me"] * 5
    assert all(sheet.styles[(r, 1)] == "highlight" for r in range(4, 9))
    assert sheet.cell_value(4, 2) is None
    assert sheet.cell_value(9, 1) is None
    assert sheet.ops[0] == ("insert", 5, 5)
    assert sheet.ops[-1] == ("delete", 4, 1)


def test_unknown_extension_degrades_to_xlsx() -> None:
    workbook = _workbook()
    load, _ = _loader(workbook)

    SpreadsheetTemplateEngine(load).fill(b"raw", _groups(), FillOptions(file_extension="ods"))

    assert workbook.saved_as == "xlsx"


def test_group_order_reorders_groups() -> None:
    workbook = _workbook()
    load, _ = _loader(workbook)

    SpreadsheetTemplateEngine(load).fill(b"raw", _groups(), FillOptions(group_order=("B", "A")))

    sheet = workbook.sheets["Template"]
    assert [sheet.cell_value(r, 1) for r in range(4, 9)] == ["UKB", "b1", "UKA", "a1", "a2"]


def test_duplicate_required_header_is_rejected() -> None:
    sheet = InMemorySheet("Template", [[], [], ["item_sku", "color_name", "size_name", "item_sku"]])
    load, _ = _loader(InMemoryWorkbook([sheet]))

    with pytest.raises(TemplateStructureError) as excinfo:
        SpreadsheetTemplateEngine(load).fill(b"raw", _groups())

    assert excinfo.value.missing_columns == ("item_sku",)


def test_extra_required_columns_are_checked() -> None:
    load, _ = _loader(_workbook())
    options = FillOptions(required_columns=("item_sku", "brand_name"))

    with pytest.raises(TemplateStructureError) as excinfo:
        SpreadsheetTemplateEngine(load).fill(b"raw", _groups(), options)

    assert excinfo.value.missing_columns == ("brand_name",)


def test_sample_rows_are_deleted_before_expansion() -> None:
    workbook = _workbook()
    sheet = workbook.sheets["Template"]
    sheet.cells[(5, 1)] = "EXAMPLE-1"
    sheet.cells[(6, 1)] = "EXAMPLE-2"
    load, _ = _loader(workbook)

    SpreadsheetTemplateEngine(load).fill(b"raw", _groups())

    assert sheet.ops[:2] == [("delete", 5, 2), ("insert", 5, 5)]
    assert [sheet.cell_value(r, 1) for r in range(4, 10)] == ["UKA", "a1", "a2", "UKB", "b1", None]


def test_keep_trailing_rows_skips_the_clear() -> None:
    workbook = _workbook()
    sheet = workbook.sheets["Template"]
    sheet.cells[(5, 1)] = "EXAMPLE-1"
    load, _ = _loader(workbook)

    SpreadsheetTemplateEngine(load).fill(b"raw", _groups(), FillOptions(keep_trailing_rows=True))

    assert sheet.ops[0] == ("insert", 5, 5)
    assert sheet.cell_value(9, 1) == "EXAMPLE-1"
