from __future__ import annotations

import logging
import math
from typing import Sequence, Tuple

import numpy as np
import pandas as pd

from .dataset import SubsetDataset
from .errors import InvalidContrastError, UnknownFactorError
from .model import FitResult, ModelFormula, fit_nb_glms, select_formula
from .preprocess import normalize_counts, size_factors
from .results import EFFECT_COL, FEATURE_COL, FIT_COLUMNS, MEAN_COL, PADJ_COL, PVALUE_COL
from .stats import bh_fdr

logger = logging.getLogger(__name__)


def level_diff_contrast(
    formula: ModelFormula,
    data_cols: Sequence[str],
    levels: Sequence[str],
    level_a: str,
    level_b: str,
) -> np.ndarray:
    """
    Build contrast vector for (beta_level_a - beta_level_b)

    The reference level (first in sorted order under treatment coding) has
    no design column and contributes zero.
    """
    cols = list(data_cols)
    reference = sorted(levels)[0]
    L = np.zeros((1, len(cols)))

    for level, weight in ((level_a, 1.0), (level_b, -1.0)):
        cn = formula.coef_name(level)
        if cn in cols:
            L[0, cols.index(cn)] += weight
        elif level != reference:
            raise InvalidContrastError(f"Missing coefficient for level '{level}': {cn}")
    return L


def wald_contrast(res, L: np.ndarray) -> Tuple[float, float]:
    """
    Returns (estimate, pvalue) for linear contrast L' beta
    """
    test = res.t_test(L)
    # Handle both scalar and array results
    effect = test.effect
    pvalue = test.pvalue
    est = float(effect.item()) if hasattr(effect, 'item') else float(effect)
    p = float(pvalue.item()) if hasattr(pvalue, 'item') else float(pvalue)
    return est, p


def fit_contrast(
    subset: SubsetDataset,
    varying_factor: str,
    level_a: str,
    level_b: str,
    *,
    max_iter: int = 8,
    alpha_init: float = 0.1,
    log_base: float = 2.0,
) -> pd.DataFrame:
    """Fit the subset's GLMs and test ``level_a`` against ``level_b``.

    Parameters
    ----------
    subset : SubsetDataset
        Samples of one comparison. Its attached formula is used; when none is
        attached the formula is selected from ``varying_factor``.
    varying_factor : str
        Metadata column whose levels are contrasted.
    level_a, level_b : str
        Levels compared; ``effectSize`` is positive when abundance is higher
        in ``level_a``.
    max_iter : int, default 8
        Maximum iterations for the common dispersion estimate.
    alpha_init : float, default 0.1
        Initial dispersion.
    log_base : float, default 2.0
        Base of the reported effect size (2.0 gives log2 fold change).

    Returns
    -------
    pd.DataFrame
        One row per subset feature, in feature order, with columns
        ``featureId, effectSize, meanAbundance, pValue, adjustedPValue``.
        Features that are all zero in the subset, or whose fit failed, have
        NaN effect and p-values.

    Raises
    ------
    UnknownFactorError
        If a formula term is not a metadata column of the subset.
    InvalidContrastError
        If a level is not observed in the subset or both levels are equal.
    FitConvergenceError
        If the GLMs cannot be fit.
    """
    formula = subset.formula if subset.formula is not None else select_formula(varying_factor)
    if formula.varying_factor != varying_factor:
        raise ValueError(
            f"Attached formula contrasts '{formula.varying_factor}', not '{varying_factor}'."
        )

    missing = [c for c in formula.term_columns() if c not in subset.metadata.columns]
    if missing:
        raise UnknownFactorError(f"Formula terms are not metadata columns: {missing}")

    level_a, level_b = str(level_a), str(level_b)
    observed = sorted(subset.metadata[varying_factor].unique().tolist())
    if level_a == level_b:
        raise InvalidContrastError(f"Cannot contrast level '{level_a}' with itself.")
    absent = [lv for lv in (level_a, level_b) if lv not in observed]
    if absent:
        raise InvalidContrastError(
            f"Levels {absent} of '{varying_factor}' are not observed in the subset "
            f"{subset.factor} == '{subset.value}'; observed: {observed}"
        )

    sf = size_factors(subset.counts)
    fit = fit_nb_glms(
        subset.counts,
        subset.metadata,
        formula,
        sf,
        max_iter=max_iter,
        alpha_init=alpha_init,
    )
    L = level_diff_contrast(formula, fit.data_cols, observed, level_a, level_b)

    est_log, pvals = _contrast_per_feature(fit, L)
    mean_abundance = normalize_counts(subset.counts, sf).mean(axis=1)

    df = pd.DataFrame(
        {
            FEATURE_COL: fit.features,
            # Convert ln effect to log-base fold change
            EFFECT_COL: est_log / math.log(float(log_base)),
            MEAN_COL: mean_abundance.to_numpy(dtype=float),
            PVALUE_COL: pvals,
        }
    )
    df[PADJ_COL] = bh_fdr(df[PVALUE_COL].to_numpy())
    return df[FIT_COLUMNS]


def _contrast_per_feature(fit: FitResult, L: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    n = len(fit.results)
    est = np.full(n, np.nan)
    pvals = np.full(n, np.nan)
    for i, res in enumerate(fit.results):
        if res is None:
            continue
        e, p = wald_contrast(res, L)
        if np.isfinite(e) and np.isfinite(p):
            est[i], pvals[i] = e, p
    return est, pvals
