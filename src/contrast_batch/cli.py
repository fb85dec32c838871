"""
Command line entry point.

Loads the count matrix and sample metadata, filters low-count features,
builds the shared dataset, runs every comparison of the comparison table and
writes per-comparison tables and volcano plots plus a batch summary.

Example
-------
    contrast-batch \\
        --counts data/counts.csv \\
        --metadata data/sample_metadata.csv \\
        --comparisons data/comparisons.xlsx --skip-rows 2 \\
        --names data/feature_names.tsv \\
        --outdir results/contrasts
"""
from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from .config import DEFAULT_EFFECT_THRESHOLD, DEFAULT_PADJ_THRESHOLD, RunConfig, config_from_args
from .comparisons import load_comparison_specs
from .dataset import build_base_dataset
from .diagnostics import zero_fraction
from .errors import InputError
from .io import load_comparison_table, load_counts_matrix, load_name_lookup, load_sample_metadata
from .lookup import NameLookup
from .orchestrator import run_batch
from .persist import ArtifactPersister
from .preprocess import filter_features_by_total_counts
from .report import format_summary, write_batch_report

logger = logging.getLogger(__name__)

_DEFAULTS = RunConfig()


def _sheet(value: str):
    return int(value) if value.isdigit() else value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="contrast-batch",
        description="Run a table of pairwise negative binomial GLM contrasts on a count matrix.",
    )
    parser.add_argument("--counts", required=True, help="Count matrix (features x samples)")
    parser.add_argument("--metadata", required=True, help="Sample metadata, one row per sample")
    parser.add_argument("--comparisons", required=True, help="Comparison definition table")
    parser.add_argument("--outdir", required=True, help="Directory for result artifacts")
    parser.add_argument("--names", default=None, help="Feature id -> name table")
    parser.add_argument("--names-id-col", default=None, help="Id column of --names (default: first)")
    parser.add_argument("--names-name-col", default=None, help="Name column of --names (default: second)")
    parser.add_argument("--skip-rows", type=int, default=_DEFAULTS.skip_rows,
                        help="Rows above the comparison table header")
    parser.add_argument("--sheet", type=_sheet, default=_DEFAULTS.sheet_name,
                        help="Sheet of the comparison workbook")
    parser.add_argument("--min-total-count", type=int, default=_DEFAULTS.min_total_count,
                        help="Drop features with fewer total counts")
    parser.add_argument("--design", default=_DEFAULTS.design, help="Base design formula; its terms are blocked on in every model")
    parser.add_argument("--padj-threshold", type=float, default=DEFAULT_PADJ_THRESHOLD)
    parser.add_argument("--effect-threshold", type=float, default=DEFAULT_EFFECT_THRESHOLD)
    parser.add_argument("--top-n", type=int, default=_DEFAULTS.top_n,
                        help="Rows per comparison in the logged summary")
    parser.add_argument("--jobs", type=int, default=_DEFAULTS.n_jobs, help="Worker processes")
    parser.add_argument("--format", choices=["csv", "excel"], default=_DEFAULTS.table_format)
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)
    paths, cfg = config_from_args(args)

    try:
        counts = load_counts_matrix(paths.counts)
        smeta = load_sample_metadata(paths.metadata)
        # same samples in a different order; mismatched sets fail validation below
        if set(counts.columns) == set(smeta.index):
            smeta = smeta.loc[list(counts.columns)]

        counts = filter_features_by_total_counts(counts, min_total=cfg.min_total_count)
        zf = zero_fraction(counts)
        logger.debug(f"Zero fraction per sample: min {zf.min():.3f}, max {zf.max():.3f}")

        base = build_base_dataset(counts, smeta, design=cfg.design)
        specs = load_comparison_specs(
            load_comparison_table(paths.comparisons, skip_rows=cfg.skip_rows, sheet_name=cfg.sheet_name)
        )
        lookup = (
            load_name_lookup(paths.names, id_col=cfg.names_id_col, name_col=cfg.names_name_col)
            if paths.names is not None
            else NameLookup()
        )
    except (InputError, ValueError, FileNotFoundError) as e:
        logger.error(f"Cannot start batch: {e}")
        return 1

    persister = ArtifactPersister.from_config(paths.results, cfg)
    outcome = run_batch(specs, base, lookup, persister=persister, n_jobs=cfg.n_jobs)

    write_batch_report(outcome, paths.results, cfg.padj_threshold, cfg.effect_threshold)
    logger.info("Batch summary\n" + format_summary(outcome, top_n=cfg.top_n))
    return 0


if __name__ == "__main__":
    sys.exit(main())
