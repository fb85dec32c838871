"""
Dispersion estimation and count diagnostics.

Functions
---------
estimate_alpha_nb2_moments
    Estimate NB2 dispersion parameter using method of moments.
zero_fraction
    Compute the fraction of zero counts per sample.
"""
from __future__ import annotations

import numpy as np
import pandas as pd


def estimate_alpha_nb2_moments(y: np.ndarray, mu: np.ndarray) -> float:
    """Estimate NB2 dispersion parameter using method of moments.

    Estimates the dispersion parameter alpha for the NB2 (quadratic)
    parameterization where Var(Y) = mu + alpha * mu^2.

    The estimator solves: sum((y - mu)^2 - mu) = alpha * sum(mu^2)

    Parameters
    ----------
    y : np.ndarray
        Observed counts.
    mu : np.ndarray
        Fitted mean values from the model.

    Returns
    -------
    float
        Estimated alpha, clipped to be non-negative.

    Examples
    --------
    >>> y = np.array([10, 20, 5, 15])
    >>> mu = np.array([12, 18, 7, 14])
    >>> alpha = estimate_alpha_nb2_moments(y, mu)
    """
    mu = np.clip(mu, 1e-9, None)
    num = np.sum((y - mu) ** 2 - mu)
    den = np.sum(mu**2)
    alpha = num / max(den, 1e-12)
    return float(max(alpha, 0.0))


def zero_fraction(counts_wide: pd.DataFrame) -> pd.Series:
    """Compute the fraction of zero counts per sample.

    Parameters
    ----------
    counts_wide : pd.DataFrame
        Wide-format count matrix with features as rows and samples
        as columns.

    Returns
    -------
    pd.Series
        Fraction of zeros for each sample (values between 0 and 1).

    Examples
    --------
    >>> counts = pd.DataFrame({"S1": [0, 10, 0, 5], "S2": [1, 0, 3, 0]})
    >>> zero_fraction(counts)
    S1    0.5
    S2    0.5
    dtype: float64
    """
    return (counts_wide == 0).mean(axis=0)
