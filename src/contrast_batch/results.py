"""
Per-comparison outcome types.

A comparison ends either as a :class:`ContrastResult` or as a
:class:`FailureRecord`. Both expose ``ok`` so callers can branch without
isinstance checks.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Union

import pandas as pd

if TYPE_CHECKING:
    from .comparisons import ComparisonSpec

FEATURE_COL = "featureId"
EFFECT_COL = "effectSize"
MEAN_COL = "meanAbundance"
PVALUE_COL = "pValue"
PADJ_COL = "adjustedPValue"
NAME_COL = "name"

#: Columns produced by the contrast fitter, in order.
FIT_COLUMNS = [FEATURE_COL, EFFECT_COL, MEAN_COL, PVALUE_COL, PADJ_COL]
#: Columns of an annotated result table, in order.
RESULT_COLUMNS = FIT_COLUMNS + [NAME_COL]


@dataclass
class ContrastResult:
    """Annotated, p-value sorted result of one comparison."""

    comparison_id: str
    #: One row per feature with :data:`RESULT_COLUMNS`.
    table: pd.DataFrame
    spec: Optional["ComparisonSpec"] = None

    ok = True

    def top(self, n: int = 5) -> pd.DataFrame:
        return self.table.head(n)

    @property
    def n_tested(self) -> int:
        return int(self.table[PVALUE_COL].notna().sum())


@dataclass(frozen=True)
class FailureRecord:
    """Why one comparison produced no result."""

    comparison_id: str
    #: Exception class name, e.g. ``"EmptySubsetError"``.
    error_kind: str
    message: str

    ok = False

    @classmethod
    def from_exception(cls, comparison_id: str, exc: BaseException) -> "FailureRecord":
        return cls(comparison_id=comparison_id, error_kind=type(exc).__name__, message=str(exc))


ComparisonOutcome = Union[ContrastResult, FailureRecord]
