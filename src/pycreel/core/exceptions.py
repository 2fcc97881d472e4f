"""
Exception and warning types for pycreel.

Fatal problems (missing columns, unresolvable weight joins, missing
replicate weights, missing trip-completeness field) raise subclasses of
:class:`PyCreelError` and abort the call with no partial result.

Non-fatal degradations are emitted with :func:`warnings.warn` using a
subclass of :class:`PyCreelWarning`, so callers can filter or escalate
them with the standard ``warnings`` machinery.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Any


class PyCreelError(Exception):
    """Base class for all pycreel errors."""


class InvalidConfigError(PyCreelError, ValueError):
    """An enumerated option (statistic, method, mode, ...) has an unknown value."""

    def __init__(self, option: str, value: Any, accepted: Sequence[str]):
        self.option = option
        self.value = value
        self.accepted = tuple(accepted)
        super().__init__(
            f"Invalid {option}={value!r}. Accepted values: {', '.join(map(str, accepted))}"
        )


class MissingColumnError(PyCreelError):
    """A required column is absent from an input table."""

    def __init__(
        self,
        columns: Iterable[str],
        context: str = "",
        hint: str | None = None,
    ):
        self.columns = list(columns)
        self.context = context
        where = f" in {context}" if context else ""
        message = f"Missing required columns{where}: {', '.join(self.columns)}"
        if hint:
            message += f". {hint}"
        super().__init__(message)


class EmptyDesignError(PyCreelError):
    """No eligible sampled units remain to build a design from."""


class WeightAlignmentError(PyCreelError):
    """Records could not be resolved against the design's unit weights."""

    def __init__(self, key: str, unmatched: Sequence[Any], detail: str = ""):
        self.key = key
        self.unmatched = list(unmatched)
        shown = ", ".join(map(str, self.unmatched[:10]))
        if len(self.unmatched) > 10:
            shown += f", ... ({len(self.unmatched)} total)"
        message = (
            f"Failed to align design weights on '{key}': "
            f"no design unit for value(s) {shown}"
        )
        if detail:
            message += f". {detail}"
        super().__init__(message)


class NoReplicatesError(PyCreelError):
    """Resampling variance requested for a design without replicate weights."""

    def __init__(self, method: str, detail: str | None = None):
        self.method = method
        message = detail or (
            f"variance method '{method}' requires replicate weights but the design "
            "has none. Attach them with build_replicate_design() or "
            "with_replicate_weights(), or pass n_replicates to build them for this call"
        )
        super().__init__(message)


class NoCompletenessFieldError(PyCreelError):
    """Auto-mode CPUE was requested without a trip-completeness column."""

    def __init__(self, field: str):
        self.field = field
        super().__init__(
            f"mode='auto' requires a '{field}' column in the interview data. "
            "Add the trip-completeness flag or select mode='ratio_of_means' or "
            "mode='mean_of_ratios' explicitly"
        )


class EmptyAfterFilterError(PyCreelError):
    """Filtering (unknown completeness, truncation, group matching) left no records."""


class CalibrationError(PyCreelError):
    """Weight calibration failed to converge or the constraints are infeasible."""


class PyCreelWarning(UserWarning):
    """Base class for pycreel warnings."""


class VarianceUnavailable(PyCreelWarning):
    """Variance could not be computed for some groups; SE reported as null."""


class DroppedColumnsWarning(PyCreelWarning):
    """Requested grouping or strata columns were absent and have been ignored."""


class ApproximationWarning(PyCreelWarning):
    """A result relies on an approximation or a weaker fallback computation."""
