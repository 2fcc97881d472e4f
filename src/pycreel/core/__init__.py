"""Core data types and exceptions for pycreel."""

from .design import (
    CreelData,
    DesignKind,
    ReplicateWeights,
    SurveyDesign,
    resolve_design,
)
from .exceptions import (
    ApproximationWarning,
    CalibrationError,
    DroppedColumnsWarning,
    EmptyAfterFilterError,
    EmptyDesignError,
    InvalidConfigError,
    MissingColumnError,
    NoCompletenessFieldError,
    NoReplicatesError,
    PyCreelError,
    PyCreelWarning,
    VarianceUnavailable,
    WeightAlignmentError,
)

__all__ = [
    "ApproximationWarning",
    "CalibrationError",
    "CreelData",
    "DesignKind",
    "DroppedColumnsWarning",
    "EmptyAfterFilterError",
    "EmptyDesignError",
    "InvalidConfigError",
    "MissingColumnError",
    "NoCompletenessFieldError",
    "NoReplicatesError",
    "PyCreelError",
    "PyCreelWarning",
    "ReplicateWeights",
    "SurveyDesign",
    "VarianceUnavailable",
    "WeightAlignmentError",
    "resolve_design",
]
