"""Grouping flat dataset rows into parent/child row groups."""

# Module responsibilities:
# - Read CSV/Excel datasets with pandas into typed dataset rows.
# - Group rows per parent key and flatten groups in the caller's order.

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

import pandas as pd

from .schema import DatasetRow, RowGroup, RowRecord
from .utils.log import get_logger

logger = get_logger("grouping")

DATASET_COLUMNS = ("parent_key", "child_key", "attribute1", "attribute2")
COLUMN_ALIASES: dict[str, str] = {
    "parent_sku": "parent_key",
    "parent": "parent_key",
    "child_sku": "child_key",
    "item_sku": "child_key",
    "sku": "child_key",
    "color": "attribute1",
    "color_name": "attribute1",
    "size": "attribute2",
    "size_name": "attribute2",
}


def _cell_text(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, float):
        if pd.isna(value):
            return ""
        if value.is_integer():
            return str(int(value))
    return str(value).strip()


def load_dataset(path: Path, sheet: str | int | None = 0) -> List[DatasetRow]:
    """Load a flat dataset from CSV or Excel.

    Columns are matched case-insensitively; ``parent_sku``/``child_sku``/
    ``color``/``size`` style headers are accepted as aliases.

    Raises:
        FileNotFoundError: When ``path`` does not exist.
        ValueError: When the parent/child key columns are missing.
    """

    if not path.exists():
        raise FileNotFoundError(f"Dataset not found: {path}")

    logger.info("Reading dataset", extra={"path": str(path)})
    if path.suffix.lower() == ".csv":
        df = pd.read_csv(path, dtype=str, keep_default_na=False)
    else:
        df = pd.read_excel(path, sheet_name=sheet, dtype=str)

    renamed: dict[str, str] = {}
    for column in df.columns:
        name = str(column).strip().lower()
        renamed[column] = COLUMN_ALIASES.get(name, name)
    df = df.rename(columns=renamed)

    missing = [col for col in DATASET_COLUMNS[:2] if col not in df.columns]
    if missing:
        raise ValueError(f"Dataset is missing column(s): {', '.join(missing)}")
    for col in DATASET_COLUMNS[2:]:
        if col not in df.columns:
            df[col] = ""

    rows = [
        DatasetRow(
            parent_key=_cell_text(record["parent_key"]),
            child_key=_cell_text(record["child_key"]),
            attribute1=_cell_text(record["attribute1"]),
            attribute2=_cell_text(record["attribute2"]),
        )
        for record in df[list(DATASET_COLUMNS)].to_dict(orient="records")
    ]
    rows = [row for row in rows if row.parent_key]
    logger.info("Dataset loaded", extra={"rows": len(rows)})
    return rows


def group_rows(dataset: Iterable[DatasetRow], *, key_prefix: str = "") -> List[RowGroup]:
    """Group dataset rows by parent key, preserving first-appearance order.

    Each group gets a parent record keyed ``key_prefix + parent_key`` with
    blank attributes, followed by one child per dataset row. Rows without a
    child key only contribute the parent.
    """

    order: List[str] = []
    children: dict[str, List[RowRecord]] = {}
    for row in dataset:
        if row.parent_key not in children:
            order.append(row.parent_key)
            children[row.parent_key] = []
        if row.child_key:
            children[row.parent_key].append(
                RowRecord("child", row.child_key, row.attribute1, row.attribute2)
            )

    return [
        RowGroup(
            key=parent_key,
            parent=RowRecord("parent", f"{key_prefix}{parent_key}"),
            children=tuple(children[parent_key]),
        )
        for parent_key in order
    ]


def select_groups(
    groups: Sequence[RowGroup],
    group_order: Optional[Sequence[str]] = None,
) -> Tuple[List[RowGroup], List[str]]:
    """Return ``(selected, skipped_keys)`` for the requested group order.

    Without ``group_order`` the input order is kept. Keys without a group and
    groups without any rows end up in ``skipped_keys``.
    """

    by_key: dict[str, RowGroup] = {}
    for group in groups:
        by_key.setdefault(group.key, group)

    ordered: List[Optional[RowGroup]]
    keys: List[str]
    if group_order is None:
        keys = [group.key for group in groups]
        ordered = list(groups)
    else:
        keys = list(group_order)
        ordered = [by_key.get(key) for key in keys]

    selected: List[RowGroup] = []
    skipped: List[str] = []
    for key, group in zip(keys, ordered):
        if group is None or len(group) == 0:
            skipped.append(key)
            continue
        selected.append(group)
    return selected, skipped


def flatten_groups(
    groups: Sequence[RowGroup],
    group_order: Optional[Sequence[str]] = None,
    *,
    log: Optional[logging.Logger] = None,
) -> List[RowRecord]:
    """Return the linear row sequence for ``groups``.

    With ``group_order`` the groups are emitted in that order; keys that
    have no group, and groups without rows, are skipped with a warning.
    """

    log = log or logger
    selected, skipped = select_groups(groups, group_order)
    for key in skipped:
        log.warning("grouping.skip key=%s reason=missing_or_empty", key)

    rows: List[RowRecord] = []
    for group in selected:
        rows.extend(group.rows())
    return rows
