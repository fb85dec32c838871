"""
Visualization functions for comparison results.

Functions
---------
volcano_plot
    Create a volcano plot of effect size vs adjusted significance.
overlap_heatmap
    Heatmap of significant features shared between comparisons.
"""
from __future__ import annotations

from pathlib import Path
from typing import Optional

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns

from .config import DEFAULT_EFFECT_THRESHOLD, DEFAULT_PADJ_THRESHOLD
from .results import EFFECT_COL, FEATURE_COL, NAME_COL, PADJ_COL


def volcano_plot(
    df: pd.DataFrame,
    *,
    x_col: str = EFFECT_COL,
    padj_col: str = PADJ_COL,
    label_col: str = NAME_COL,
    padj_thresh: float = DEFAULT_PADJ_THRESHOLD,
    effect_thresh: float = DEFAULT_EFFECT_THRESHOLD,
    title: Optional[str] = None,
    top_n_labels: int = 10,
    outpath: Optional[str | Path] = None,
    dpi: int = 200,
):
    """Create a volcano plot of effect size vs significance.

    Generates a scatter plot with log2 fold change on the x-axis and
    -log10(adjusted p-value) on the y-axis. Features passing both thresholds
    are colored by direction: blue for higher in level A, red for lower;
    everything else is gray. Thresholds only affect coloring and the dashed
    guide lines, never which rows are plotted.

    Parameters
    ----------
    df : pd.DataFrame
        Annotated result table (see :class:`~contrast_batch.results.ContrastResult`).
    x_col : str, default "effectSize"
        Column name for x-axis values (log2 fold change).
    padj_col : str, default "adjustedPValue"
        Column name for adjusted p-values.
    label_col : str, default "name"
        Column name for point labels; falls back to ``featureId`` when empty.
    padj_thresh : float, default 0.05
        Adjusted p-value highlighting threshold.
    effect_thresh : float, default 1.0
        Absolute effect size highlighting threshold.
    title : str or None, default None
        Plot title.
    top_n_labels : int, default 10
        Number of most significant highlighted points to label.
    outpath : str, Path, or None, default None
        If provided, save the figure to this path.
    dpi : int, default 200
        Resolution for saved figure.

    Returns
    -------
    fig : matplotlib.figure.Figure
        The matplotlib figure object.
    ax : matplotlib.axes.Axes
        The matplotlib axes object.

    Raises
    ------
    ValueError
        If the input DataFrame is empty.
    """
    if df.empty:
        raise ValueError("volcano_plot received an empty DataFrame.")

    x = df[x_col].to_numpy(dtype=float)
    padj = df[padj_col].to_numpy(dtype=float)
    y = -np.log10(np.clip(padj, 1e-300, None))
    finite = np.isfinite(x) & np.isfinite(y)

    with np.errstate(invalid="ignore"):
        sig = finite & (padj < padj_thresh) & (np.abs(x) >= effect_thresh)
    colors = np.where(sig, np.where(x >= 0, "#3182bd", "#e34a33"), "#bdbdbd")

    fig, ax = plt.subplots()
    ax.scatter(x[finite], y[finite], c=colors[finite], s=12, alpha=0.7)

    # Threshold lines (light gray)
    y_line = -np.log10(max(padj_thresh, 1e-300))
    ax.axhline(y_line, color="gray", linestyle="--", linewidth=0.8, alpha=0.6)
    ax.axvline(+effect_thresh, color="gray", linestyle="--", linewidth=0.8, alpha=0.6)
    ax.axvline(-effect_thresh, color="gray", linestyle="--", linewidth=0.8, alpha=0.6)

    ax.set_xlabel(r"$\log_2$ fold change")
    ax.set_ylabel(r"$-\log_{10}$ adjusted p-value")
    if title:
        ax.set_title(title)

    # Label top N highlighted points by adjusted p-value
    if top_n_labels and sig.any():
        sub = df[sig].assign(_y=y[sig]).sort_values(padj_col).head(int(top_n_labels))
        for _, r in sub.iterrows():
            label = r.get(label_col)
            if label is None or pd.isna(label) or not str(label):
                label = r[FEATURE_COL]
            ax.text(float(r[x_col]), float(r["_y"]), str(label), fontsize=8)

    ax.margins(0.05)
    fig.tight_layout()

    if outpath is not None:
        outpath = Path(outpath)
        outpath.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(outpath, dpi=dpi, bbox_inches="tight")

    return fig, ax


def overlap_heatmap(
    overlap: pd.DataFrame,
    *,
    title: Optional[str] = "Shared significant features",
    cmap: str = "Blues",
    figsize: Optional[tuple[float, float]] = None,
    outpath: Optional[str | Path] = None,
    dpi: int = 200,
):
    """Heatmap of a square comparison x comparison overlap matrix.

    Parameters
    ----------
    overlap : pd.DataFrame
        Counts of shared significant features, as returned by
        :func:`contrast_batch.report.significant_overlap`. The diagonal holds
        each comparison's own count.
    title : str or None
        Plot title.
    cmap : str, default "Blues"
        Matplotlib colormap name.
    figsize : tuple of float or None
        Figure size; auto-sized from the number of comparisons when None.
    outpath : str, Path, or None
        If provided, save the figure to this path.
    dpi : int, default 200
        Resolution for saved figure.

    Returns
    -------
    fig, ax
        The matplotlib figure and axes.
    """
    if overlap.empty:
        raise ValueError("overlap_heatmap received an empty DataFrame.")

    if figsize is None:
        n = overlap.shape[0]
        figsize = (max(4, n * 0.8 + 2), max(3, n * 0.6 + 1))

    fig, ax = plt.subplots(figsize=figsize)
    sns.heatmap(overlap, annot=True, fmt="d", cmap=cmap, cbar=False, square=True, ax=ax)
    ax.set_xlabel("")
    ax.set_ylabel("")
    ax.set_xticklabels(ax.get_xticklabels(), rotation=45, ha="right", fontsize=9)
    ax.set_yticklabels(ax.get_yticklabels(), rotation=0, fontsize=9)
    if title:
        ax.set_title(title)
    fig.tight_layout()

    if outpath is not None:
        outpath = Path(outpath)
        outpath.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(outpath, dpi=dpi, bbox_inches="tight")

    return fig, ax
