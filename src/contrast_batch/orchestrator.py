"""
Batch execution of comparisons.

Every comparison is processed independently against the shared
:class:`~contrast_batch.dataset.BaseDataset`: subset, select formula, fit,
annotate, persist. A failure in any step is recorded as a
:class:`~contrast_batch.results.FailureRecord` for that comparison and the
batch moves on, so every spec ends with either a result or a failure entry.

Functions
---------
process_comparison
    Run one comparison and return its outcome; never raises for per-item errors.
run_batch
    Convenience wrapper around :class:`BatchOrchestrator`.

Classes
-------
BatchOrchestrator
    Holds the shared dataset and collaborators and runs batches.
BatchOutcome
    Read-only mapping of comparison id to outcome, in spec order.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from multiprocessing import Pool
from typing import Callable, Dict, Iterator, List, Optional, Sequence

import pandas as pd

from .comparisons import ComparisonSpec
from .contrasts import fit_contrast
from .dataset import BaseDataset, SubsetDataset, scoped_subset
from .errors import ComparisonError, ComparisonFailed
from .model import blocking_terms, select_formula
from .persist import ArtifactPaths, ArtifactPersister
from .results import ComparisonOutcome, ContrastResult, FailureRecord
from .stats import annotate_contrast

logger = logging.getLogger(__name__)

#: ``error_kind`` of comparisons skipped after cancellation.
CANCELLED = "Cancelled"

Fitter = Callable[[SubsetDataset, str, str, str], pd.DataFrame]
Lookup = Callable[[str], Optional[str]]


class BatchOutcome(Mapping):
    """Outcome of every comparison of a batch, keyed by comparison id."""

    def __init__(self):
        self._outcomes: Dict[str, ComparisonOutcome] = {}
        #: Files written for each persisted comparison.
        self.artifacts: Dict[str, ArtifactPaths] = {}

    def _record(self, outcome: ComparisonOutcome) -> None:
        self._outcomes[outcome.comparison_id] = outcome

    def __getitem__(self, comparison_id: str) -> ComparisonOutcome:
        return self._outcomes[comparison_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._outcomes)

    def __len__(self) -> int:
        return len(self._outcomes)

    @property
    def succeeded(self) -> Dict[str, ContrastResult]:
        return {k: v for k, v in self._outcomes.items() if v.ok}

    @property
    def failed(self) -> Dict[str, FailureRecord]:
        return {k: v for k, v in self._outcomes.items() if not v.ok}


def process_comparison(
    spec: ComparisonSpec,
    base: BaseDataset,
    lookup: Lookup,
    fitter: Fitter = fit_contrast,
) -> ComparisonOutcome:
    """Subset, select, fit and annotate one comparison.

    The formula blocks on donor and on every other term of ``base.design``
    except the held-constant factor. Errors raised by any step are returned
    as a :class:`FailureRecord`.
    Errors outside the :class:`ComparisonError` family are wrapped in
    :class:`ComparisonFailed` first. The subset is released whether or not
    the fit succeeds.
    """
    try:
        with scoped_subset(base, spec.hold_constant_factor, spec.hold_constant_value) as subset:
            blocking = blocking_terms(base.design, spec.hold_constant_factor)
            subset.attach_formula(select_formula(spec.varying_factor, blocking=blocking))
            rows = fitter(subset, spec.varying_factor, spec.level_a, spec.level_b)
        return annotate_contrast(spec.id, rows, lookup, spec=spec)
    except ComparisonError as exc:
        return FailureRecord.from_exception(spec.id, exc)
    except Exception as exc:
        logger.debug(f"{spec.id}: unexpected error", exc_info=True)
        wrapped = ComparisonFailed(f"{type(exc).__name__}: {exc}", cause=exc)
        return FailureRecord.from_exception(spec.id, wrapped)


# Per-process state of pool workers, set once by the pool initializer.
_worker_state: Dict[str, object] = {}


def _init_worker(base: BaseDataset, lookup: Lookup, fitter: Fitter) -> None:
    _worker_state["base"] = base
    _worker_state["lookup"] = lookup
    _worker_state["fitter"] = fitter


def _process_in_worker(spec: ComparisonSpec) -> ComparisonOutcome:
    return process_comparison(
        spec, _worker_state["base"], _worker_state["lookup"], _worker_state["fitter"]
    )


class BatchOrchestrator:
    """
    Runs comparisons against a shared base dataset.

    Parameters
    ----------
    base : BaseDataset
        Shared, read-only dataset.
    lookup : callable
        Feature id -> name or None.
    persister : ArtifactPersister, optional
        Writes the table and plot of each successful comparison. Persisting
        always happens in the calling process, in spec order.
    fitter : callable, default :func:`~contrast_batch.contrasts.fit_contrast`
        ``fitter(subset, varying_factor, level_a, level_b) -> DataFrame``.
        Must be picklable (a module-level function) when ``n_jobs > 1``.
    should_stop : callable, optional
        Polled between comparisons; once it returns True, the remaining
        comparisons are recorded as cancelled.
    n_jobs : int, default 1
        Worker processes. 1 runs sequentially in this process.
    """

    def __init__(
        self,
        base: BaseDataset,
        lookup: Lookup,
        persister: Optional[ArtifactPersister] = None,
        fitter: Fitter = fit_contrast,
        should_stop: Optional[Callable[[], bool]] = None,
        n_jobs: int = 1,
    ):
        self.base = base
        self.lookup = lookup
        self.persister = persister
        self.fitter = fitter
        self.should_stop = should_stop
        self.n_jobs = max(1, int(n_jobs))

    def run(self, specs: Sequence[ComparisonSpec]) -> BatchOutcome:
        """Process every spec and return the outcome mapping."""
        specs = list(specs)
        ids = [s.id for s in specs]
        if len(set(ids)) != len(ids):
            raise ValueError("Comparison ids must be unique within a batch.")

        outcome = BatchOutcome()
        logger.info(
            f"Running {len(specs)} comparisons on {len(self.base.features)} features "
            f"({self.n_jobs} job{'s' if self.n_jobs > 1 else ''})"
        )

        if self.n_jobs == 1 or len(specs) <= 1:
            self._run_sequential(specs, outcome)
        else:
            self._run_pool(specs, outcome)

        logger.info(
            f"Batch complete: {len(outcome.succeeded)} succeeded, {len(outcome.failed)} failed"
        )
        return outcome

    def _cancelled(self) -> bool:
        return self.should_stop is not None and bool(self.should_stop())

    def _run_sequential(self, specs: List[ComparisonSpec], outcome: BatchOutcome) -> None:
        for index, spec in enumerate(specs, start=1):
            if self._cancelled():
                self._cancel_remaining(specs[index - 1:], outcome)
                return
            result = process_comparison(spec, self.base, self.lookup, self.fitter)
            self._finish(index, len(specs), result, outcome)

    def _run_pool(self, specs: List[ComparisonSpec], outcome: BatchOutcome) -> None:
        initargs = (self.base, self.lookup, self.fitter)
        with Pool(processes=self.n_jobs, initializer=_init_worker, initargs=initargs) as pool:
            results = pool.imap(_process_in_worker, specs)
            for index, spec in enumerate(specs, start=1):
                if self._cancelled():
                    # leaving the context terminates outstanding work
                    self._cancel_remaining(specs[index - 1:], outcome)
                    return
                self._finish(index, len(specs), next(results), outcome)

    def _finish(
        self,
        index: int,
        total: int,
        result: ComparisonOutcome,
        outcome: BatchOutcome,
    ) -> None:
        if result.ok and self.persister is not None:
            try:
                outcome.artifacts[result.comparison_id] = self.persister.persist(result, index)
            except Exception as exc:
                logger.debug(f"{result.comparison_id}: persisting failed", exc_info=True)
                wrapped = ComparisonFailed(
                    f"Could not persist artifacts: {type(exc).__name__}: {exc}", cause=exc
                )
                result = FailureRecord.from_exception(result.comparison_id, wrapped)

        if result.ok:
            logger.info(
                f"[{index}/{total}] {result.comparison_id}: "
                f"{result.n_tested}/{len(result.table)} features tested"
            )
        else:
            logger.warning(
                f"[{index}/{total}] {result.comparison_id} failed "
                f"({result.error_kind}): {result.message}"
            )
        outcome._record(result)

    def _cancel_remaining(self, remaining: List[ComparisonSpec], outcome: BatchOutcome) -> None:
        logger.warning(f"Batch cancelled; skipping {len(remaining)} remaining comparisons")
        for spec in remaining:
            outcome._record(
                FailureRecord(
                    comparison_id=spec.id,
                    error_kind=CANCELLED,
                    message="Batch cancelled before this comparison completed.",
                )
            )


def run_batch(
    specs: Sequence[ComparisonSpec],
    base: BaseDataset,
    lookup: Lookup,
    *,
    persister: Optional[ArtifactPersister] = None,
    fitter: Fitter = fit_contrast,
    should_stop: Optional[Callable[[], bool]] = None,
    n_jobs: int = 1,
) -> BatchOutcome:
    """Run a batch of comparisons; see :class:`BatchOrchestrator`."""
    orchestrator = BatchOrchestrator(
        base,
        lookup,
        persister=persister,
        fitter=fitter,
        should_stop=should_stop,
        n_jobs=n_jobs,
    )
    return orchestrator.run(specs)
