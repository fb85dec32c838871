"""
Multiple testing correction and result annotation.

Functions
---------
bh_fdr
    Benjamini-Hochberg FDR adjustment.
annotate_contrast
    Attach feature names to a fitted contrast and rank it by p-value.
significant_features
    Feature ids passing adjusted p-value and effect size thresholds.
"""
from __future__ import annotations

from typing import Callable, Optional

import numpy as np
import pandas as pd

from .results import (
    EFFECT_COL,
    FEATURE_COL,
    FIT_COLUMNS,
    NAME_COL,
    PADJ_COL,
    PVALUE_COL,
    RESULT_COLUMNS,
    ContrastResult,
)


def bh_fdr(pvals: np.ndarray) -> np.ndarray:
    """Benjamini-Hochberg FDR adjustment.

    Adjusts p-values to control the false discovery rate using the
    Benjamini-Hochberg procedure. Non-finite p-values are left as NaN and
    do not count towards the number of tests.

    Parameters
    ----------
    pvals : array-like
        Raw p-values.

    Returns
    -------
    qvals : np.ndarray
        BH-adjusted p-values, same shape as pvals.

    Notes
    -----
    The procedure ranks p-values and computes q_i = p_i * n / rank_i,
    then enforces monotonicity (q_i >= q_{i-1} for sorted p-values).

    Examples
    --------
    >>> pvals = np.array([0.001, 0.01, 0.05, 0.1])
    >>> qvals = bh_fdr(pvals)
    >>> qvals
    array([0.004     , 0.02      , 0.06666667, 0.1       ])
    """
    pvals = np.asarray(pvals, dtype=float)
    out = np.full(pvals.shape, np.nan, dtype=float)

    ok = np.isfinite(pvals)
    if ok.sum() == 0:
        return out

    p = pvals[ok]
    order = np.argsort(p)
    ranks = np.arange(1, p.size + 1)

    q = p[order] * p.size / ranks
    # enforce monotonicity
    q = np.minimum.accumulate(q[::-1])[::-1]
    q = np.clip(q, 0.0, 1.0)

    out_idx = np.where(ok)[0][order]
    out[out_idx] = q
    return out


def annotate_contrast(
    comparison_id: str,
    rows: pd.DataFrame,
    lookup: Callable[[str], Optional[str]],
    spec=None,
) -> ContrastResult:
    """Attach feature names and sort a contrast table by p-value.

    Parameters
    ----------
    comparison_id : str
        Id of the originating comparison.
    rows : pd.DataFrame
        Fitter output holding at least :data:`~contrast_batch.results.FIT_COLUMNS`.
    lookup : callable
        Maps a feature id to its name, or ``None`` when unknown.
    spec : ComparisonSpec, optional
        Kept on the result for reporting.

    Returns
    -------
    ContrastResult
        Table with a ``name`` column, stable-sorted ascending by ``pValue``
        with missing p-values last.

    Raises
    ------
    ValueError
        If ``rows`` lacks one of the fitter columns.
    """
    missing = [c for c in FIT_COLUMNS if c not in rows.columns]
    if missing:
        raise ValueError(f"{comparison_id}: contrast table is missing columns {missing}")

    table = rows.copy()
    table[NAME_COL] = [lookup(str(fid)) for fid in table[FEATURE_COL]]
    table = table.sort_values(
        PVALUE_COL, ascending=True, kind="mergesort", na_position="last"
    ).reset_index(drop=True)
    extra = [c for c in table.columns if c not in RESULT_COLUMNS]
    return ContrastResult(comparison_id=comparison_id, table=table[RESULT_COLUMNS + extra], spec=spec)


def significant_features(
    table: pd.DataFrame,
    padj_thresh: float = 0.05,
    effect_thresh: float = 1.0,
) -> list[str]:
    """Feature ids with ``adjustedPValue < padj_thresh`` and ``|effectSize| >= effect_thresh``."""
    padj = table[PADJ_COL].to_numpy(dtype=float)
    effect = table[EFFECT_COL].to_numpy(dtype=float)
    with np.errstate(invalid="ignore"):
        mask = np.isfinite(padj) & (padj < padj_thresh) & (np.abs(effect) >= effect_thresh)
    return table.loc[mask, FEATURE_COL].astype(str).tolist()
