"""
Run configuration.

Functions
---------
config_from_args
    Build :class:`Paths` and :class:`RunConfig` from parsed CLI arguments.

Classes
-------
Paths
    Input tables and the results directory.
RunConfig
    Tunable settings of a batch run.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Optional, Tuple

#: Sample metadata column used as the blocking term in every formula.
DONOR_COL = "donor"

#: Default volcano highlighting thresholds.
DEFAULT_PADJ_THRESHOLD = 0.05
DEFAULT_EFFECT_THRESHOLD = 1.0


@dataclass(frozen=True)
class Paths:
    counts: Path
    metadata: Path
    comparisons: Path
    results: Path
    names: Optional[Path] = None


@dataclass(frozen=True)
class RunConfig:
    """Settings for one batch run."""

    #: Rows to skip above the comparison table header.
    skip_rows: int = 0
    #: Sheet of the comparison workbook (ignored for text tables).
    sheet_name: str | int = 0
    #: Features with fewer total counts across all samples are dropped.
    min_total_count: int = 10
    #: Base design of the shared dataset; every term must be a metadata column.
    design: str = f"~ {DONOR_COL}"
    #: Adjusted p-value threshold used for highlighting and overlap.
    padj_threshold: float = DEFAULT_PADJ_THRESHOLD
    #: Absolute effect size (log2) threshold used for highlighting and overlap.
    effect_threshold: float = DEFAULT_EFFECT_THRESHOLD
    #: Rows per comparison shown in the logged summary.
    top_n: int = 5
    #: Worker processes; 1 runs the batch sequentially.
    n_jobs: int = 1
    table_format: Literal["csv", "excel"] = "csv"
    #: Feature id and name columns of the name lookup table.
    names_id_col: Optional[str] = None
    names_name_col: Optional[str] = None


def config_from_args(args) -> Tuple[Paths, RunConfig]:
    """Build the run configuration from an ``argparse.Namespace``."""
    paths = Paths(
        counts=Path(args.counts),
        metadata=Path(args.metadata),
        comparisons=Path(args.comparisons),
        results=Path(args.outdir),
        names=Path(args.names) if args.names else None,
    )
    cfg = RunConfig(
        skip_rows=args.skip_rows,
        sheet_name=args.sheet,
        min_total_count=args.min_total_count,
        design=args.design,
        padj_threshold=args.padj_threshold,
        effect_threshold=args.effect_threshold,
        top_n=args.top_n,
        n_jobs=args.jobs,
        table_format=args.format,
        names_id_col=args.names_id_col,
        names_name_col=args.names_name_col,
    )
    return paths, cfg
