"""
Count matrix preprocessing.

This module provides functions for filtering low-abundance features and for
estimating per-sample size factors used as GLM offsets.

Functions
---------
filter_features_by_total_counts
    Filter features by minimum total counts.
size_factors
    Median-of-ratios size factors for each sample.
normalize_counts
    Divide counts by size factors.
"""
from __future__ import annotations

import logging
import warnings

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


def filter_features_by_total_counts(
    counts_wide: pd.DataFrame,
    min_total: int = 10,
) -> pd.DataFrame:
    """Filter features by minimum total counts across all samples.

    Removes features (rows) that have fewer than ``min_total`` counts
    summed across all samples.

    Parameters
    ----------
    counts_wide : pd.DataFrame
        Wide-format count matrix with features as rows.
    min_total : int, default 10
        Minimum total count threshold. Features with fewer counts are removed.

    Returns
    -------
    pd.DataFrame
        Filtered count matrix containing only features meeting the threshold,
        in their original order.

    Examples
    --------
    >>> counts = pd.DataFrame(
    ...     {"S1": [1, 100], "S2": [5, 200]},
    ...     index=["low", "high"]
    ... )
    >>> filtered = filter_features_by_total_counts(counts, min_total=10)
    >>> list(filtered.index)
    ['high']
    """
    totals = counts_wide.sum(axis=1)
    keep = totals[totals >= min_total].index
    logger.info(
        f"Kept {len(keep)} of {len(totals)} features with >= {min_total} total counts"
    )
    return counts_wide.loc[keep]


def size_factors(counts_wide: pd.DataFrame) -> pd.Series:
    """Median-of-ratios size factors for each sample.

    Each sample's factor is the median, over features with no zero count,
    of the ratio between the sample's count and the feature's geometric mean
    across samples.

    Parameters
    ----------
    counts_wide : pd.DataFrame
        Features x samples count matrix.

    Returns
    -------
    pd.Series
        Positive size factor per sample, indexed like ``counts_wide.columns``.

    Notes
    -----
    If no feature is non-zero in every sample the median of ratios is
    undefined; library sizes scaled to a geometric mean of 1 are used
    instead, with a warning.

    Examples
    --------
    >>> counts = pd.DataFrame({"S1": [10, 20], "S2": [20, 40]})
    >>> size_factors(counts).round(3).tolist()
    [0.707, 1.414]
    """
    values = counts_wide.to_numpy(dtype=float)
    positive = np.all(values > 0, axis=1)

    if positive.any():
        log_vals = np.log(values[positive])
        log_geo_means = log_vals.mean(axis=1, keepdims=True)
        sf = np.exp(np.median(log_vals - log_geo_means, axis=0))
    else:
        warnings.warn(
            "No feature is non-zero in every sample; using library-size factors."
        )
        lib = np.clip(values.sum(axis=0), 1.0, None)
        sf = lib / np.exp(np.log(lib).mean())

    return pd.Series(sf, index=counts_wide.columns, name="size_factor")


def normalize_counts(counts_wide: pd.DataFrame, factors: pd.Series) -> pd.DataFrame:
    """Divide each sample's counts by its size factor."""
    return counts_wide.div(factors.loc[counts_wide.columns], axis=1)
