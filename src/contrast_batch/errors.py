"""
Exception hierarchy for the comparison batch.

Errors fall in two families. :class:`InputError` subclasses signal that the
whole input is untrustworthy and are raised before any comparison runs.
:class:`ComparisonError` subclasses are raised while processing a single
comparison and are recovered by the orchestrator, which records them as a
failure for that comparison and moves on.
"""
from __future__ import annotations


class ContrastBatchError(Exception):
    """Base class for all errors raised by this package."""
    pass


class InputError(ContrastBatchError):
    """Raised when a batch input is unusable; aborts the batch."""
    pass


class MalformedSpecError(InputError):
    """Raised when a comparison table row lacks a required column or value."""
    pass


class DuplicateSpecError(InputError):
    """Raised when two comparison table rows share the same id."""
    pass


class DatasetMismatchError(InputError):
    """Raised when the count matrix and sample metadata disagree."""
    pass


class ComparisonError(ContrastBatchError):
    """Raised while processing one comparison; recorded, never fatal."""
    pass


class UnknownFactorError(ComparisonError):
    """Raised when a factor is not a sample metadata column."""
    pass


class EmptySubsetError(ComparisonError):
    """Raised when no sample matches the hold-constant condition."""
    pass


class UnsupportedFactorError(ComparisonError):
    """Raised when a varying factor has no registered model formula."""
    pass


class InvalidContrastError(ComparisonError):
    """Raised when the contrast levels are not observed in the subset."""
    pass


class FitConvergenceError(ComparisonError):
    """Raised when the GLM cannot be fit on the subset."""
    pass


class ComparisonFailed(ComparisonError):
    """Wraps an unexpected error raised by a collaborator."""

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(message)
        self.cause = cause
