"""Exception taxonomy shared by every dispatching layer."""

from __future__ import annotations


class DispatchingError(Exception):
    """Base class for all dispatching failures."""


class MalformedInputError(DispatchingError):
    """Raised when an input table has missing columns or non-numeric fields."""


class EntityValidationError(DispatchingError):
    """Raised when an entity is constructed with out-of-range values."""


class PartitionConsistencyError(DispatchingError):
    """Raised when inventories do not line up across depots."""


class AllocationValidationError(DispatchingError):
    """Raised when allocation run options are invalid."""


class SolverDependencyError(DispatchingError):
    """Raised when OR-Tools or the requested backend is unavailable."""


class ExtractionError(DispatchingError):
    """Raised when results are requested from a model without a solution."""
