"""
Shared base dataset and per-comparison subsets.

Functions
---------
build_base_dataset
    Validate counts and metadata and freeze them into a :class:`BaseDataset`.
subset_dataset
    Restrict a base dataset to samples matching one metadata value.
scoped_subset
    Context manager around :func:`subset_dataset` that releases the subset.

Classes
-------
BaseDataset
    Immutable counts + sample metadata shared by every comparison.
SubsetDataset
    Samples of one comparison, optionally with an attached model formula.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, List, Optional

import numpy as np
import pandas as pd

from .comparisons import cell_str
from .config import DONOR_COL
from .errors import DatasetMismatchError, EmptySubsetError, UnknownFactorError
from .model import ModelFormula, design_terms

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BaseDataset:
    """Counts and sample metadata shared read-only by every comparison."""

    #: Features x samples integer counts.
    counts: pd.DataFrame
    #: Sample metadata indexed by sample id; every value is a string.
    metadata: pd.DataFrame
    #: Base design formula of the experiment.
    design: str = f"~ {DONOR_COL}"

    @property
    def features(self) -> List[str]:
        return list(self.counts.index)

    @property
    def samples(self) -> List[str]:
        return list(self.counts.columns)

    @property
    def factors(self) -> List[str]:
        return list(self.metadata.columns)


@dataclass
class SubsetDataset:
    """Samples of a base dataset eligible for one comparison.

    Owned by a single comparison. :meth:`release` drops the frames once the
    contrast has been computed.
    """

    counts: pd.DataFrame
    metadata: pd.DataFrame
    factor: str
    value: str
    formula: Optional[ModelFormula] = None
    released: bool = False

    @property
    def samples(self) -> List[str]:
        return list(self.counts.columns)

    def attach_formula(self, formula: ModelFormula) -> None:
        if self.formula is not None:
            raise ValueError("A model formula is already attached to this subset.")
        self.formula = formula

    def release(self) -> None:
        self.counts = pd.DataFrame()
        self.metadata = pd.DataFrame()
        self.formula = None
        self.released = True


def build_base_dataset(
    counts: pd.DataFrame,
    metadata: pd.DataFrame,
    design: str = f"~ {DONOR_COL}",
) -> BaseDataset:
    """Validate counts against metadata and build the shared dataset.

    Parameters
    ----------
    counts : pd.DataFrame
        Features x samples count matrix, typically already filtered with
        :func:`~contrast_batch.preprocess.filter_features_by_total_counts`.
    metadata : pd.DataFrame
        Sample metadata indexed by sample id.
    design : str, default "~ donor"
        Base design formula; each term must be a metadata column.

    Returns
    -------
    BaseDataset
        Copies of the inputs with metadata values rendered by
        :func:`~contrast_batch.comparisons.cell_str`.

    Raises
    ------
    DatasetMismatchError
        If the count columns are not exactly the metadata sample ids in the
        same order, if ids are duplicated, if counts are negative or
        non-finite, or if a design term is not a metadata column.
    """
    count_samples = [str(c) for c in counts.columns]
    meta_samples = [str(s) for s in metadata.index]

    if len(set(count_samples)) != len(count_samples):
        raise DatasetMismatchError("Count matrix has duplicated sample columns.")
    if len(set(meta_samples)) != len(meta_samples):
        raise DatasetMismatchError("Sample metadata has duplicated sample ids.")
    if count_samples != meta_samples:
        only_counts = sorted(set(count_samples) - set(meta_samples))
        only_meta = sorted(set(meta_samples) - set(count_samples))
        if not only_counts and not only_meta:
            raise DatasetMismatchError(
                "Count matrix columns and sample metadata rows are in a different order."
            )
        raise DatasetMismatchError(
            f"Samples differ between counts and metadata: "
            f"only in counts {only_counts[:10]}, only in metadata {only_meta[:10]}"
        )
    if counts.index.duplicated().any():
        dups = counts.index[counts.index.duplicated()].unique().tolist()
        raise DatasetMismatchError(f"Count matrix has duplicated features: {dups[:10]}")

    values = counts.to_numpy(dtype=float)
    if not np.all(np.isfinite(values)) or (values < 0).any():
        raise DatasetMismatchError("Counts must be finite and non-negative.")

    missing = [t for t in design_terms(design) if t not in metadata.columns]
    if missing:
        raise DatasetMismatchError(f"Design terms are not metadata columns: {missing}")

    counts = counts.copy()
    counts.columns = count_samples
    counts.index = counts.index.astype(str)
    counts.index.name = "featureId"

    metadata = metadata.apply(lambda col: col.map(cell_str))
    metadata.index = meta_samples
    metadata.index.name = "sample_id"

    logger.info(
        f"Base dataset: {counts.shape[0]} features x {counts.shape[1]} samples, "
        f"design '{design}'"
    )
    return BaseDataset(counts=counts, metadata=metadata, design=design)


def subset_dataset(base: BaseDataset, factor: str, value: object) -> SubsetDataset:
    """Restrict ``base`` to samples whose ``factor`` equals ``value``.

    Values are compared after :func:`~contrast_batch.comparisons.cell_str`,
    so a metadata value ``1.0`` matches the table value ``"1"``.

    Raises
    ------
    UnknownFactorError
        If ``factor`` is not a metadata column.
    EmptySubsetError
        If no sample matches.
    """
    if factor not in base.metadata.columns:
        raise UnknownFactorError(
            f"'{factor}' is not a sample metadata column; known factors: {base.factors}"
        )

    value = cell_str(value)
    mask = base.metadata[factor] == value
    if not mask.any():
        observed = sorted(base.metadata[factor].unique().tolist())
        raise EmptySubsetError(
            f"No samples with {factor} == '{value}'; observed values: {observed}"
        )

    samples = base.metadata.index[mask]
    return SubsetDataset(
        counts=base.counts.loc[:, samples].copy(),
        metadata=base.metadata.loc[samples].copy(),
        factor=factor,
        value=value,
    )


@contextmanager
def scoped_subset(base: BaseDataset, factor: str, value: object) -> Iterator[SubsetDataset]:
    """Yield :func:`subset_dataset` and release it on every exit path."""
    subset = subset_dataset(base, factor, value)
    try:
        yield subset
    finally:
        subset.release()
