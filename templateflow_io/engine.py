"""Spreadsheet template engine: fills row groups into a formatted template."""

# Module responsibilities:
# - Locate the template sheet, header row and anchor row.
# - Clear sample rows below the anchor before writing.
# - Duplicate the anchor row once per output row and write the mapped columns.
# - Serialise the filled workbook back into the requested container.

from __future__ import annotations

import logging
from typing import Optional, Sequence, Tuple

from templateflow.core.errors import EmptyInputError, TemplateStructureError

from .columns import ColumnMap, resolve_column_map
from .content_types import resolve_container
from .grouping import flatten_groups
from .schema import FillOptions, RowGroup, RowRecord
from .utils.log import get_logger
from .workbook import OpenpyxlWorkbook, SheetAdapter, WorkbookAdapter, WorkbookLoader

PROGRESS_EVERY = 50


class SpreadsheetTemplateEngine:
    """Fill hierarchical rows into a copy of a template workbook.

    The anchor row (by default the row right below the header) is the
    formatting prototype: every output row is a copy of it with the key and
    attribute columns overwritten. The engine keeps no state between calls.
    """

    def __init__(
        self,
        workbook_loader: WorkbookLoader = OpenpyxlWorkbook.load,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._load = workbook_loader
        self._logger = logger or get_logger("engine")

    def fill(
        self,
        template_bytes: bytes,
        row_groups: Sequence[RowGroup],
        options: FillOptions | None = None,
    ) -> bytes:
        """Return the serialised workbook with one row per flattened record.

        Raises:
            EmptyInputError: When there are no groups or every group was skipped.
            TemplateStructureError: When the sheet or a required column is missing,
                or the bytes are not a readable workbook.
        """

        options = options or FillOptions()
        if not row_groups:
            raise EmptyInputError("No row groups supplied")
        rows = flatten_groups(row_groups, options.group_order, log=self._logger)
        if not rows:
            raise EmptyInputError("All row groups were skipped; nothing to write")

        workbook = self._load(template_bytes, options.file_extension)
        sheet = self._select_sheet(workbook, options)
        column_map = self._column_map(sheet, options)
        anchor = options.resolved_anchor_row
        columns = tuple(column_map[name] for name in options.mapped_columns)

        self._logger.info(
            "engine.fill_start sheet=%s anchor=%d rows=%d",
            sheet.title,
            anchor,
            len(rows),
        )

        trailing = sheet.max_row - anchor
        if trailing > 0 and not options.keep_trailing_rows:
            sheet.delete_rows(anchor + 1, trailing)
            self._logger.info("engine.trailing_cleared sheet=%s rows=%d", sheet.title, trailing)

        if options.keep_anchor_row:
            self._write_record(sheet, anchor, columns, rows[0])
            self._expand(sheet, anchor, anchor + 1, rows[1:], columns)
        else:
            self._expand(sheet, anchor, anchor + 1, rows, columns)
            sheet.delete_rows(anchor, 1)

        container = resolve_container(options.file_extension)
        content = workbook.to_bytes(container)
        self._logger.info(
            "engine.fill_done sheet=%s rows=%d container=%s bytes=%d",
            sheet.title,
            len(rows),
            container,
            len(content),
        )
        return content

    def validate_template(self, template_bytes: bytes, options: FillOptions | None = None) -> ColumnMap:
        """Check sheet and header of a template without filling it."""

        options = options or FillOptions()
        workbook = self._load(template_bytes, options.file_extension)
        sheet = self._select_sheet(workbook, options)
        return self._column_map(sheet, options)

    def read_layout(
        self, document_bytes: bytes, options: FillOptions | None = None
    ) -> Tuple[ColumnMap, int]:
        """Re-read a filled document: its column map and data row count.

        Data rows are counted from the anchor row down to the first row whose
        key column is blank.
        """

        options = options or FillOptions()
        workbook = self._load(document_bytes, options.file_extension)
        sheet = self._select_sheet(workbook, options)
        column_map = self._column_map(sheet, options)
        key_col = column_map[options.key_column]
        count = 0
        row = options.resolved_anchor_row
        while row <= sheet.max_row:
            value = sheet.cell_value(row, key_col)
            if value is None or str(value).strip() == "":
                break
            count += 1
            row += 1
        return column_map, count

    # Internal helpers -------------------------------------------------

    def _select_sheet(self, workbook: WorkbookAdapter, options: FillOptions) -> SheetAdapter:
        if options.sheet_name in workbook.sheet_names:
            return workbook.get_sheet(options.sheet_name)
        if options.allow_first_sheet_fallback and workbook.sheet_names:
            fallback = workbook.first_sheet()
            self._logger.warning(
                "engine.sheet_fallback wanted=%s using=%s",
                options.sheet_name,
                fallback.title,
            )
            return fallback
        raise TemplateStructureError(
            f"Sheet '{options.sheet_name}' not found in template",
            sheet=options.sheet_name,
        )

    def _column_map(self, sheet: SheetAdapter, options: FillOptions) -> ColumnMap:
        try:
            return resolve_column_map(
                sheet.header_values(options.header_row),
                options.resolved_required_columns,
                header_row=options.header_row,
            )
        except TemplateStructureError as exc:
            raise TemplateStructureError(
                str(exc), sheet=sheet.title, missing_columns=exc.missing_columns
            ) from exc

    def _expand(
        self,
        sheet: SheetAdapter,
        anchor: int,
        start: int,
        rows: Sequence[RowRecord],
        columns: Tuple[int, int, int],
    ) -> None:
        if not rows:
            return
        sheet.insert_rows(start, len(rows))
        for offset, record in enumerate(rows):
            target = start + offset
            sheet.copy_row(anchor, target)
            self._write_record(sheet, target, columns, record)
            if (offset + 1) % PROGRESS_EVERY == 0:
                self._logger.info("engine.fill_progress written=%d total=%d", offset + 1, len(rows))

    @staticmethod
    def _write_record(
        sheet: SheetAdapter, row: int, columns: Tuple[int, int, int], record: RowRecord
    ) -> None:
        key_col, attr1_col, attr2_col = columns
        sheet.set_value(row, key_col, record.key_value)
        sheet.set_value(row, attr1_col, record.attribute1 or None)
        sheet.set_value(row, attr2_col, record.attribute2 or None)


__all__ = ["SpreadsheetTemplateEngine", "PROGRESS_EVERY"]
