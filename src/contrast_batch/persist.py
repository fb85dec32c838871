"""
Per-comparison artifact writing.

An :class:`ArtifactPersister` writes, for each successful comparison, one
result table and one volcano plot named ``<NN>_<id>``, where ``NN`` is the
comparison's position in the batch.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from os import PathLike
from pathlib import Path
from typing import Literal, Optional, Union

import matplotlib.pyplot as plt

from .config import DEFAULT_EFFECT_THRESHOLD, DEFAULT_PADJ_THRESHOLD, RunConfig
from .plots import volcano_plot
from .results import ContrastResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ArtifactPaths:
    table: Path
    plot: Optional[Path]


def safe_stem(comparison_id: str) -> str:
    """File-name-safe version of a comparison id.

    Examples
    --------
    >>> safe_stem("tlr on: control/galnac")
    'tlr_on_control_galnac'
    """
    stem = re.sub(r"[^0-9A-Za-z._-]+", "_", comparison_id).strip("_.")
    return stem or "comparison"


class ArtifactPersister:
    """
    Writes a result table and a volcano plot per comparison.

    Parameters
    ----------
    results_path : PathLike or str
        Directory to save artifacts; created if missing.
    format : {'csv', 'excel'}, default 'csv'
        Table format.
    padj_thresh, effect_thresh : float
        Volcano highlighting thresholds. Tables always keep every row.
    top_n_labels : int, default 10
        Highlighted features labelled on the volcano plot.
    dpi : int, default 200
        Plot resolution.
    """

    def __init__(
        self,
        results_path: Union[PathLike, str],
        format: Literal['csv', 'excel'] = 'csv',
        padj_thresh: float = DEFAULT_PADJ_THRESHOLD,
        effect_thresh: float = DEFAULT_EFFECT_THRESHOLD,
        top_n_labels: int = 10,
        dpi: int = 200,
    ):
        if format not in ('csv', 'excel'):
            raise ValueError(f"Unknown table format: {format}")
        self.results_path = Path(results_path)
        self.format = format
        self.padj_thresh = padj_thresh
        self.effect_thresh = effect_thresh
        self.top_n_labels = top_n_labels
        self.dpi = dpi

    @classmethod
    def from_config(cls, results_path: Union[PathLike, str], cfg: RunConfig) -> "ArtifactPersister":
        return cls(
            results_path,
            format=cfg.table_format,
            padj_thresh=cfg.padj_threshold,
            effect_thresh=cfg.effect_threshold,
        )

    def stem(self, result: ContrastResult, index: int) -> str:
        return f"{index:02d}_{safe_stem(result.comparison_id)}"

    def persist(self, result: ContrastResult, index: int) -> ArtifactPaths:
        """
        Save the table and plot of one comparison.

        Parameters
        ----------
        result : ContrastResult
            Annotated result.
        index : int
            1-based position of the comparison in the batch.

        Returns
        -------
        ArtifactPaths
            Written files. ``plot`` is None when no feature could be tested,
            since there is nothing to draw.
        """
        self.results_path.mkdir(parents=True, exist_ok=True)
        stem = self.stem(result, index)

        if self.format == 'excel':
            table_path = self.results_path / f"{stem}.xlsx"
            result.table.to_excel(table_path, index=False)
        else:
            table_path = self.results_path / f"{stem}.csv"
            result.table.to_csv(table_path, index=False)

        plot_path = None
        if result.n_tested > 0:
            plot_path = self.results_path / f"{stem}_volcano.png"
            title = result.spec.label if result.spec is not None else result.comparison_id
            fig, _ = volcano_plot(
                result.table,
                padj_thresh=self.padj_thresh,
                effect_thresh=self.effect_thresh,
                title=title,
                top_n_labels=self.top_n_labels,
            )
            try:
                fig.savefig(plot_path, dpi=self.dpi, bbox_inches="tight")
            finally:
                plt.close(fig)
        else:
            logger.warning(f"{result.comparison_id}: no tested features, volcano plot skipped")

        logger.info(f"{result.comparison_id}: saved {table_path.name}")
        return ArtifactPaths(table=table_path, plot=plot_path)
