"""
Batch reporting.

Functions
---------
summary_table
    One row per comparison: status, failure kind and message, counts.
format_summary
    Human-readable text: top rows of each result or its failure.
significant_overlap
    Pairwise counts of significant features shared between comparisons.
write_batch_report
    Save the summary and overlap artifacts of a batch.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Optional

import matplotlib.pyplot as plt
import pandas as pd

from .config import DEFAULT_EFFECT_THRESHOLD, DEFAULT_PADJ_THRESHOLD
from .orchestrator import BatchOutcome
from .plots import overlap_heatmap
from .results import EFFECT_COL, FEATURE_COL, NAME_COL, PADJ_COL, PVALUE_COL
from .stats import significant_features

logger = logging.getLogger(__name__)

_SUMMARY_COLUMNS = [
    "comparison_id", "status", "error_kind", "message", "n_features", "n_tested", "n_significant",
]


def summary_table(
    outcome: BatchOutcome,
    padj_thresh: float = DEFAULT_PADJ_THRESHOLD,
    effect_thresh: float = DEFAULT_EFFECT_THRESHOLD,
) -> pd.DataFrame:
    """One row per comparison, in batch order."""
    rows = []
    for cid, res in outcome.items():
        if res.ok:
            rows.append(
                {
                    "comparison_id": cid,
                    "status": "ok",
                    "error_kind": None,
                    "message": None,
                    "n_features": len(res.table),
                    "n_tested": res.n_tested,
                    "n_significant": len(
                        significant_features(res.table, padj_thresh, effect_thresh)
                    ),
                }
            )
        else:
            rows.append(
                {
                    "comparison_id": cid,
                    "status": "failed",
                    "error_kind": res.error_kind,
                    "message": res.message,
                    "n_features": 0,
                    "n_tested": 0,
                    "n_significant": 0,
                }
            )
    return pd.DataFrame(rows, columns=_SUMMARY_COLUMNS)


def format_summary(outcome: BatchOutcome, top_n: int = 5) -> str:
    """Text summary showing the top ``top_n`` rows or the failure of each comparison."""
    cols = [FEATURE_COL, NAME_COL, EFFECT_COL, PVALUE_COL, PADJ_COL]
    blocks = []
    for cid, res in outcome.items():
        if res.ok:
            top = res.top(top_n)[cols]
            body = top.to_string(index=False, float_format=lambda v: f"{v:.3g}")
            blocks.append(f"== {cid}: top {len(top)} of {len(res.table)} features\n{body}")
        else:
            blocks.append(f"== {cid}: FAILED ({res.error_kind}) {res.message}")
    return "\n\n".join(blocks)


def significant_overlap(
    outcome: BatchOutcome,
    padj_thresh: float = DEFAULT_PADJ_THRESHOLD,
    effect_thresh: float = DEFAULT_EFFECT_THRESHOLD,
) -> pd.DataFrame:
    """Shared significant features between every pair of successful comparisons.

    Returns
    -------
    pd.DataFrame
        Square integer matrix indexed and labelled by comparison id. Cell
        ``(i, j)`` is the number of features significant in both; the
        diagonal is each comparison's own count.
    """
    sig: Dict[str, set] = {
        cid: set(significant_features(res.table, padj_thresh, effect_thresh))
        for cid, res in outcome.succeeded.items()
    }
    ids = list(sig)
    data = [[len(sig[a] & sig[b]) for b in ids] for a in ids]
    return pd.DataFrame(data, index=ids, columns=ids, dtype=int)


def write_batch_report(
    outcome: BatchOutcome,
    results_path: str | Path,
    padj_thresh: float = DEFAULT_PADJ_THRESHOLD,
    effect_thresh: float = DEFAULT_EFFECT_THRESHOLD,
) -> Dict[str, Optional[Path]]:
    """
    Save ``batch_summary.csv`` and, with two or more successful comparisons,
    ``significant_overlap.csv`` and ``significant_overlap.png``.
    """
    results_path = Path(results_path)
    results_path.mkdir(parents=True, exist_ok=True)

    written: Dict[str, Optional[Path]] = {"summary": None, "overlap": None, "overlap_plot": None}
    summary_path = results_path / "batch_summary.csv"
    summary_table(outcome, padj_thresh, effect_thresh).to_csv(summary_path, index=False)
    written["summary"] = summary_path

    if len(outcome.succeeded) >= 2:
        overlap = significant_overlap(outcome, padj_thresh, effect_thresh)
        overlap_path = results_path / "significant_overlap.csv"
        overlap.to_csv(overlap_path)
        written["overlap"] = overlap_path

        plot_path = results_path / "significant_overlap.png"
        fig, _ = overlap_heatmap(
            overlap,
            title=f"Shared features (padj < {padj_thresh:g}, |effect| >= {effect_thresh:g})",
        )
        try:
            fig.savefig(plot_path, dpi=200, bbox_inches="tight")
        finally:
            plt.close(fig)
        written["overlap_plot"] = plot_path

    logger.info(f"Batch report saved to {results_path}")
    return written
