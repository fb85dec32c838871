"""
Model formulas and negative binomial GLM fitting.

This module maps each supported varying factor to a donor-blocked model
formula and fits per-feature negative binomial GLMs with a common,
iteratively estimated dispersion parameter.

Functions
---------
select_formula
    Look up the formula for a varying factor.
supported_factors
    Names of the varying factors with a registered formula.
blocking_terms
    Blocking terms of a comparison derived from the base design.
fit_nb_glms
    Fit one negative binomial GLM per feature with a shared alpha.

Classes
-------
VaryingFactor
    Closed set of factors whose levels can be contrasted.
ModelFormula
    Patsy formula of one comparison.
FitResult
    Container for the per-feature fitted models.
"""
from __future__ import annotations

import logging
import re
import warnings
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import patsy
import statsmodels.api as sm
from statsmodels.tools.sm_exceptions import PerfectSeparationError

from .config import DONOR_COL
from .diagnostics import estimate_alpha_nb2_moments
from .errors import FitConvergenceError, UnsupportedFactorError

logger = logging.getLogger(__name__)


class VaryingFactor(str, Enum):
    """Factors whose levels can be contrasted within a subset."""

    DENDRIMER = "dendrimer"
    TLR = "tlr"


@dataclass(frozen=True)
class ModelFormula:
    """Additive patsy formula with categorical terms."""

    #: Metadata column whose levels are contrasted.
    varying_factor: str
    #: Metadata columns entered as blocking terms ahead of the varying factor.
    blocking_factors: Tuple[str, ...] = (DONOR_COL,)

    @property
    def rhs(self) -> str:
        terms = [*self.blocking_factors, self.varying_factor]
        return " + ".join(f"C({t})" for t in terms)

    @property
    def formula(self) -> str:
        return f"~ {self.rhs}"

    def term_columns(self) -> List[str]:
        return [*self.blocking_factors, self.varying_factor]

    def coef_name(self, level: str) -> str:
        # patsy names treatment-coded levels "C(factor)[T.<level>]"
        return f"C({self.varying_factor})[T.{level}]"


def design_terms(design: str) -> List[str]:
    """Column names referenced by a simple additive design formula.

    Examples
    --------
    >>> design_terms("~ donor + C(tlr) + dendrimer")
    ['donor', 'tlr', 'dendrimer']
    """
    rhs = design.split("~", 1)[-1]
    terms = []
    for raw in rhs.split("+"):
        raw = raw.strip()
        if not raw or raw in {"0", "1"}:
            continue
        m = re.fullmatch(r"C\(\s*([^,\)]+?)\s*(?:,.*)?\)", raw)
        terms.append(m.group(1) if m else raw)
    return terms


def blocking_terms(design: str, *exclude: str) -> Tuple[str, ...]:
    """Donor followed by the other terms of ``design``, minus ``exclude``.

    Examples
    --------
    >>> blocking_terms("~ donor + plate + tlr", "tlr", "dendrimer")
    ('donor', 'plate')
    """
    terms = [DONOR_COL] + design_terms(design)
    out = []
    for t in terms:
        if t not in out and t not in exclude:
            out.append(t)
    return tuple(out)


def _donor_blocked(factor: VaryingFactor) -> Callable[[Tuple[str, ...]], ModelFormula]:
    def build(blocking: Tuple[str, ...]) -> ModelFormula:
        return ModelFormula(varying_factor=factor.value, blocking_factors=blocking)
    return build


_FORMULA_BUILDERS: Dict[VaryingFactor, Callable[[Tuple[str, ...]], ModelFormula]] = {
    VaryingFactor.DENDRIMER: _donor_blocked(VaryingFactor.DENDRIMER),
    VaryingFactor.TLR: _donor_blocked(VaryingFactor.TLR),
}


def supported_factors() -> List[str]:
    return [f.value for f in _FORMULA_BUILDERS]


def select_formula(
        varying_factor: str,
        blocking: Optional[Sequence[str]] = None,
) -> ModelFormula:
    """Return the model formula for ``varying_factor``.

    Parameters
    ----------
    varying_factor : str
        Name of the metadata column being contrasted.
    blocking : sequence of str, optional
        Blocking terms entered ahead of the varying factor, typically from
        :func:`blocking_terms`. Defaults to donor only. The varying factor
        is never blocked on.

    Returns
    -------
    ModelFormula
        Formula blocking on donor, e.g. ``~ C(donor) + C(dendrimer)``.

    Raises
    ------
    UnsupportedFactorError
        If no formula is registered for the factor. New factors must be
        added to :class:`VaryingFactor` and the builder mapping explicitly.

    Examples
    --------
    >>> select_formula("dendrimer").formula
    '~ C(donor) + C(dendrimer)'
    >>> select_formula("tlr", blocking=["donor", "plate", "tlr"]).formula
    '~ C(donor) + C(plate) + C(tlr)'
    """
    try:
        factor = VaryingFactor(str(varying_factor).strip())
    except ValueError:
        raise UnsupportedFactorError(
            f"No model formula for varying factor '{varying_factor}'; "
            f"supported: {supported_factors()}"
        ) from None
    if blocking is None:
        terms: Tuple[str, ...] = (DONOR_COL,)
    else:
        terms = tuple(dict.fromkeys(t for t in blocking if t != factor.value))
    return _FORMULA_BUILDERS[factor](terms)


@dataclass
class FitResult:
    """Container for per-feature negative binomial GLM fits."""

    #: Fitted GLM results in feature order; None where the feature was not fit.
    results: List[Optional[sm.GLM]]
    #: Feature ids, aligned with ``results``.
    features: List[str]
    #: The common dispersion parameter (NB2 parameterization).
    alpha: float
    #: Whether the alpha iteration converged before ``max_iter``.
    alpha_converged: bool
    #: The formula used for fitting.
    formula: ModelFormula
    #: Column names from the design matrix, used for contrast construction.
    data_cols: List[str]

    @property
    def n_fitted(self) -> int:
        return sum(r is not None for r in self.results)


def design_matrix(metadata: pd.DataFrame, formula: ModelFormula) -> pd.DataFrame:
    """Build the design matrix and check it can be fit.

    Raises
    ------
    FitConvergenceError
        If the design is rank deficient (e.g. the varying factor is
        confounded with donor) or leaves no residual degrees of freedom.
    """
    X = patsy.dmatrix(formula.rhs, data=metadata, return_type="dataframe")
    n, p = X.shape
    rank = np.linalg.matrix_rank(X.to_numpy(dtype=float))
    if rank < p:
        raise FitConvergenceError(
            f"Design '{formula.formula}' is rank deficient ({rank} < {p} columns) "
            f"on {n} samples."
        )
    if n <= p:
        raise FitConvergenceError(
            f"Design '{formula.formula}' has {p} columns but only {n} samples; "
            "no residual degrees of freedom."
        )
    return X


def _fit_one(y: np.ndarray, X: np.ndarray, offset: np.ndarray, alpha: float):
    model = sm.GLM(y, X, family=sm.families.NegativeBinomial(alpha=alpha), offset=offset)
    try:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            res = model.fit(maxiter=100)
    except (ValueError, np.linalg.LinAlgError, PerfectSeparationError):
        return None
    if not np.all(np.isfinite(res.params)):
        return None
    return res


def fit_nb_glms(
        counts: pd.DataFrame,
        metadata: pd.DataFrame,
        formula: ModelFormula,
        size_factors: pd.Series,
        max_iter: int = 8,
        alpha_init: float = 0.1,
) -> FitResult:
    """Fit one negative binomial GLM per feature with a common dispersion.

    The dispersion parameter alpha is shared by all features and estimated
    iteratively:

    1. Fit every feature's GLM with the current alpha
    2. Update alpha by method of moments from the pooled fitted means
    3. Repeat until the relative change is below 5%

    The NB2 variance function is: Var(Y) = mu + alpha * mu^2

    Parameters
    ----------
    counts : pd.DataFrame
        Features x samples counts.
    metadata : pd.DataFrame
        Sample metadata indexed like ``counts.columns``.
    formula : ModelFormula
        Formula from :func:`select_formula`.
    size_factors : pd.Series
        Per-sample size factors; ``log(size_factors)`` is the offset.
    max_iter : int, default 8
        Maximum iterations for alpha estimation.
    alpha_init : float, default 0.1
        Initial dispersion parameter value.

    Returns
    -------
    FitResult
        Per-feature results; features with zero total counts or whose fit
        fails numerically are ``None``.

    Raises
    ------
    FitConvergenceError
        If the design cannot be fit or no feature could be fit.
    """
    metadata = metadata.loc[counts.columns]
    X_df = design_matrix(metadata, formula)
    X = X_df.to_numpy(dtype=float)
    offset = np.log(np.asarray(size_factors.loc[counts.columns], dtype=float))
    Y = counts.to_numpy(dtype=float)
    testable = np.flatnonzero(Y.sum(axis=1) > 0)

    if testable.size == 0:
        raise FitConvergenceError("Every feature has zero counts in this subset.")

    alpha = float(alpha_init)
    converged = False
    n_iter = 0
    for _ in range(max_iter):
        n_iter += 1
        ys, mus = [], []
        for i in testable:
            res = _fit_one(Y[i], X, offset, alpha)
            if res is not None:
                ys.append(Y[i])
                mus.append(np.asarray(res.fittedvalues))
        if not mus:
            raise FitConvergenceError(
                f"No feature could be fit with '{formula.formula}' (alpha={alpha:.3g})."
            )

        alpha_new = estimate_alpha_nb2_moments(np.concatenate(ys), np.concatenate(mus))
        # stabilize updates
        alpha_new = 0.5 * alpha + 0.5 * alpha_new
        # Bound alpha to reasonable range
        alpha_new = float(np.clip(alpha_new, 1e-4, 100.0))
        if abs(alpha_new - alpha) / (alpha + 1e-9) < 0.05:
            alpha = alpha_new
            converged = True
            break
        alpha = alpha_new

    if not converged:
        warnings.warn(
            f"Dispersion did not converge in {max_iter} iterations; using alpha={alpha:.3g}."
        )

    # Final fits with the final alpha so that every result matches FitResult.alpha
    results: List[Optional[sm.GLM]] = [None] * Y.shape[0]
    for i in testable:
        results[i] = _fit_one(Y[i], X, offset, alpha)

    fit = FitResult(
        results=results,
        features=list(counts.index),
        alpha=alpha,
        alpha_converged=converged,
        formula=formula,
        data_cols=list(X_df.columns),
    )
    if fit.n_fitted == 0:
        raise FitConvergenceError(f"No feature could be fit with '{formula.formula}'.")

    logger.debug(
        f"Fitted {fit.n_fitted}/{len(results)} features with {formula.formula}, "
        f"alpha={alpha:.4g} after {n_iter} iterations"
    )
    return fit
