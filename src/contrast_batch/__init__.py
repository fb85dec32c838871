"""
contrast-batch: Batch pairwise differential-abundance contrasts on count data.

This package runs a table of comparisons against one shared count matrix. Each
comparison holds one metadata factor constant, fits donor-blocked negative
binomial GLMs and reports a Wald contrast between two levels of a varying
factor for every feature.

Modules
-------
io
    Data loading functions for count matrices, metadata and comparison tables.
comparisons
    Comparison table parsing and validation.
dataset
    Shared base dataset and per-comparison subsets.
preprocess
    Count filtering and size-factor normalization.
model
    Formula selection and negative binomial GLM fitting.
contrasts
    Wald contrasts between two levels of the varying factor.
stats
    FDR correction, result annotation and significance calls.
results
    Per-comparison result and failure types.
orchestrator
    Batch execution with per-comparison failure isolation.
persist
    Per-comparison table and plot writing.
report
    Batch summary and overlap of significant features.
plots
    Visualization functions (volcano plots, overlap heatmaps).
diagnostics
    Dispersion and count diagnostics.
cli
    Command line entry point.

Example
-------
>>> import contrast_batch as cb
>>> counts = cb.load_counts_matrix("data/counts.csv")
>>> smeta = cb.load_sample_metadata("data/sample_metadata.csv")
>>> base = cb.build_base_dataset(cb.filter_features_by_total_counts(counts), smeta)
>>> specs = cb.load_comparison_specs(cb.load_comparison_table("data/comparisons.xlsx", skip_rows=2))
>>> outcome = cb.run_batch(specs, base, cb.NameLookup())
"""

__version__ = "0.1.0"

# comparisons
from .comparisons import (
    ComparisonSpec,
    load_comparison_specs,
)

# config
from .config import (
    Paths,
    RunConfig,
)

# contrasts
from .contrasts import (
    fit_contrast,
    level_diff_contrast,
    wald_contrast,
)

# dataset
from .dataset import (
    BaseDataset,
    SubsetDataset,
    build_base_dataset,
    scoped_subset,
    subset_dataset,
)

# diagnostics
from .diagnostics import (
    estimate_alpha_nb2_moments,
    zero_fraction,
)

# errors
from .errors import (
    ComparisonError,
    ComparisonFailed,
    ContrastBatchError,
    DatasetMismatchError,
    DuplicateSpecError,
    EmptySubsetError,
    FitConvergenceError,
    InputError,
    InvalidContrastError,
    MalformedSpecError,
    UnknownFactorError,
    UnsupportedFactorError,
)

# io
from .io import (
    load_comparison_table,
    load_counts_matrix,
    load_name_lookup,
    load_sample_metadata,
)

# lookup
from .lookup import (
    NameLookup,
)

# model
from .model import (
    FitResult,
    ModelFormula,
    VaryingFactor,
    blocking_terms,
    design_terms,
    fit_nb_glms,
    select_formula,
    supported_factors,
)

# orchestrator
from .orchestrator import (
    BatchOrchestrator,
    BatchOutcome,
    process_comparison,
    run_batch,
)

# persist
from .persist import (
    ArtifactPaths,
    ArtifactPersister,
)

# plots
from .plots import (
    overlap_heatmap,
    volcano_plot,
)

# preprocess
from .preprocess import (
    filter_features_by_total_counts,
    normalize_counts,
    size_factors,
)

# report
from .report import (
    format_summary,
    significant_overlap,
    summary_table,
    write_batch_report,
)

# results
from .results import (
    ContrastResult,
    FailureRecord,
)

# stats
from .stats import (
    annotate_contrast,
    bh_fdr,
    significant_features,
)

__all__ = [
    # comparisons
    "ComparisonSpec",
    "load_comparison_specs",
    # config
    "Paths",
    "RunConfig",
    # contrasts
    "fit_contrast",
    "level_diff_contrast",
    "wald_contrast",
    # dataset
    "BaseDataset",
    "SubsetDataset",
    "build_base_dataset",
    "scoped_subset",
    "subset_dataset",
    # diagnostics
    "estimate_alpha_nb2_moments",
    "zero_fraction",
    # errors
    "ComparisonError",
    "ComparisonFailed",
    "ContrastBatchError",
    "DatasetMismatchError",
    "DuplicateSpecError",
    "EmptySubsetError",
    "FitConvergenceError",
    "InputError",
    "InvalidContrastError",
    "MalformedSpecError",
    "UnknownFactorError",
    "UnsupportedFactorError",
    # io
    "load_comparison_table",
    "load_counts_matrix",
    "load_name_lookup",
    "load_sample_metadata",
    # lookup
    "NameLookup",
    # model
    "FitResult",
    "ModelFormula",
    "VaryingFactor",
    "blocking_terms",
    "design_terms",
    "fit_nb_glms",
    "select_formula",
    "supported_factors",
    # orchestrator
    "BatchOrchestrator",
    "BatchOutcome",
    "process_comparison",
    "run_batch",
    # persist
    "ArtifactPaths",
    "ArtifactPersister",
    # plots
    "overlap_heatmap",
    "volcano_plot",
    # preprocess
    "filter_features_by_total_counts",
    "normalize_counts",
    "size_factors",
    # report
    "format_summary",
    "significant_overlap",
    "summary_table",
    "write_batch_report",
    # results
    "ContrastResult",
    "FailureRecord",
    # stats
    "annotate_contrast",
    "bh_fdr",
    "significant_features",
]
