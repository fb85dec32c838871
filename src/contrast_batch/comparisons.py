"""
Comparison definitions.

Each row of the comparison table asks for one contrast: hold one metadata
factor at a value, and compare two levels of another factor within the
remaining samples.

Functions
---------
load_comparison_specs
    Validate a raw comparison table and return its specs in row order.

Classes
-------
ComparisonSpec
    One planned comparison.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Dict, List

import pandas as pd

from .errors import DuplicateSpecError, MalformedSpecError

logger = logging.getLogger(__name__)

#: Canonical column name -> ComparisonSpec attribute.
SPEC_COLUMNS: Dict[str, str] = {
    "id": "id",
    "holdConstantFactor": "hold_constant_factor",
    "holdConstantValue": "hold_constant_value",
    "varyingFactor": "varying_factor",
    "levelA": "level_a",
    "levelB": "level_b",
}


@dataclass(frozen=True)
class ComparisonSpec:
    """One planned comparison; ``level_a`` vs ``level_b`` sets the effect sign."""

    id: str
    hold_constant_factor: str
    hold_constant_value: str
    varying_factor: str
    level_a: str
    level_b: str
    #: 1-based row of the source table below its header.
    row_number: int = 0

    @property
    def label(self) -> str:
        return (
            f"{self.varying_factor} {self.level_a} vs {self.level_b} "
            f"({self.hold_constant_factor} = {self.hold_constant_value})"
        )


def _header_key(c: object) -> str:
    return re.sub(r"[^0-9a-z]", "", str(c).lower())


def cell_str(v: object) -> str:
    """Table cell or metadata value as text; empty for missing, integral floats without ".0".

    Examples
    --------
    >>> cell_str(2.0), cell_str(" on "), cell_str(float("nan"))
    ('2', 'on', '')
    """
    if v is None or (not isinstance(v, str) and pd.isna(v)):
        return ""
    if isinstance(v, float) and v.is_integer():
        return str(int(v))
    return str(v).strip()


def _resolve_columns(table: pd.DataFrame) -> Dict[str, str]:
    by_key = {}
    for col in table.columns:
        by_key.setdefault(_header_key(col), col)

    resolved, missing = {}, []
    for canonical in SPEC_COLUMNS:
        col = by_key.get(_header_key(canonical))
        if col is None:
            missing.append(canonical)
        else:
            resolved[canonical] = col
    if missing:
        raise MalformedSpecError(
            f"Comparison table is missing required columns {missing}; "
            f"found {list(table.columns)}"
        )
    return resolved


def load_comparison_specs(table: pd.DataFrame) -> List[ComparisonSpec]:
    """Validate a raw comparison table.

    Parameters
    ----------
    table : pd.DataFrame
        Raw table, one comparison per row, as returned by
        :func:`contrast_batch.io.load_comparison_table`. Header names are
        matched ignoring case, spaces and underscores.

    Returns
    -------
    list of ComparisonSpec
        In table order. Rows whose cells are all empty are dropped.

    Raises
    ------
    MalformedSpecError
        If a required column is missing from the header, or a retained row
        has an empty required cell.
    DuplicateSpecError
        If two retained rows share an id.
    """
    columns = _resolve_columns(table)
    cells = table.apply(lambda col: col.map(cell_str))

    specs: List[ComparisonSpec] = []
    seen: Dict[str, int] = {}
    n_blank = 0
    for row_number, (_, row) in enumerate(cells.iterrows(), start=1):
        if not any(row.tolist()):
            n_blank += 1
            continue

        values = {attr: row[columns[canonical]] for canonical, attr in SPEC_COLUMNS.items()}
        empty = [c for c, attr in SPEC_COLUMNS.items() if not values[attr]]
        if empty:
            raise MalformedSpecError(f"Comparison table row {row_number} has no value for {empty}")

        spec_id = values["id"]
        if spec_id in seen:
            raise DuplicateSpecError(
                f"Comparison id '{spec_id}' appears on rows {seen[spec_id]} and {row_number}"
            )
        seen[spec_id] = row_number
        specs.append(ComparisonSpec(row_number=row_number, **values))

    logger.info(f"Loaded {len(specs)} comparisons ({n_blank} blank rows dropped)")
    return specs
